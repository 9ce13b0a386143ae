from typing import Literal

from conduit_fs.protocol.base import Request, Result


class EmptyResult(Result):
    """
    A result with no payload, used to acknowledge a request.
    """


class PingRequest(Request):
    """
    Liveness check. Either side may send it at any time.
    """

    method: Literal["ping"] = "ping"

    @classmethod
    def expected_result_type(cls) -> type[EmptyResult]:
        return EmptyResult
