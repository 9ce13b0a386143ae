from unittest.mock import AsyncMock

import pytest

from conduit_fs.filesystem.index import ResourceIndex
from conduit_fs.filesystem.paths import PathGuard, to_uri
from conduit_fs.protocol.common import EmptyResult
from conduit_fs.protocol.content import TextResourceContents
from conduit_fs.protocol.resources import (
    ListResourcesRequest,
    ReadResourceRequest,
    ReadResourceResult,
    SubscribeRequest,
    UnsubscribeRequest,
)
from conduit_fs.server.managers.resources import ResourceManager


class TestResourceListing:
    async def test_lists_index_entries(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "notes.md").write_text("# notes")
        index = ResourceIndex(PathGuard([root]))
        index.initialize(watch=False)
        manager = ResourceManager(index)

        # Act
        result = await manager.handle_list_resources("client", ListResourcesRequest())

        # Assert
        assert len(result.resources) == 1
        resource = result.resources[0]
        assert resource.uri == to_uri(root / "notes.md")
        assert resource.name == "notes.md"
        assert resource.description == f"File: {root / 'notes.md'}"
        assert resource.mime_type == "text/markdown"

    async def test_lists_nothing_without_index(self):
        manager = ResourceManager()
        result = await manager.handle_list_resources("client", ListResourcesRequest())
        assert result.resources == []


class TestResourceReading:
    async def test_read_delegates_to_handler(self):
        # Arrange
        manager = ResourceManager()
        expected = ReadResourceResult(
            contents=[TextResourceContents(uri="file:///data/a.txt", text="a")]
        )
        manager.read_handler = AsyncMock(return_value=expected)
        request = ReadResourceRequest(uri="file:///data/a.txt")

        # Act
        result = await manager.handle_read("client", request)

        # Assert
        manager.read_handler.assert_awaited_once_with("client", request)
        assert result is expected

    async def test_read_without_handler_raises_keyerror(self):
        manager = ResourceManager()
        with pytest.raises(KeyError):
            await manager.handle_read(
                "client", ReadResourceRequest(uri="file:///data/a.txt")
            )


class TestSubscriptions:
    def setup_method(self):
        self.manager = ResourceManager()

    async def test_subscribe_records_client_and_calls_handler(self):
        # Arrange
        self.manager.subscribe_handler = AsyncMock()

        # Act
        result = await self.manager.handle_subscribe(
            "client-1", SubscribeRequest(uri="file:///data/a.txt")
        )

        # Assert
        assert isinstance(result, EmptyResult)
        assert self.manager.subscribers("file:///data/a.txt") == ["client-1"]
        self.manager.subscribe_handler.assert_awaited_once_with(
            "client-1", "file:///data/a.txt"
        )

    async def test_subscribe_rejects_non_file_uris(self):
        with pytest.raises(KeyError):
            await self.manager.handle_subscribe(
                "client-1", SubscribeRequest(uri="https://example.com/a")
            )

    async def test_failing_subscribe_handler_still_subscribes(self):
        # Arrange
        self.manager.subscribe_handler = AsyncMock(side_effect=RuntimeError("boom"))

        # Act
        await self.manager.handle_subscribe(
            "client-1", SubscribeRequest(uri="file:///data/a.txt")
        )

        # Assert
        assert self.manager.get_client_subscriptions("client-1") == {
            "file:///data/a.txt"
        }

    async def test_unsubscribe_removes_subscription(self):
        # Arrange
        await self.manager.handle_subscribe(
            "client-1", SubscribeRequest(uri="file:///data/a.txt")
        )

        # Act
        await self.manager.handle_unsubscribe(
            "client-1", UnsubscribeRequest(uri="file:///data/a.txt")
        )

        # Assert
        assert self.manager.subscribers("file:///data/a.txt") == []

    async def test_unsubscribe_unknown_raises_keyerror(self):
        with pytest.raises(KeyError):
            await self.manager.handle_unsubscribe(
                "client-1", UnsubscribeRequest(uri="file:///data/a.txt")
            )

    async def test_directory_change_affects_subscriptions_beneath_it(self):
        # Arrange
        for uri in ["file:///data/dir/a.txt", "file:///data/dir2/b.txt"]:
            await self.manager.handle_subscribe("client-1", SubscribeRequest(uri=uri))

        # Act
        affected = self.manager.affected_subscriptions("file:///data/dir")

        # Assert
        assert affected == [("client-1", "file:///data/dir/a.txt")]

    async def test_cleanup_client_drops_all_subscriptions(self):
        # Arrange
        await self.manager.handle_subscribe(
            "client-1", SubscribeRequest(uri="file:///data/a.txt")
        )

        # Act
        self.manager.cleanup_client("client-1")

        # Assert
        assert self.manager.get_client_subscriptions("client-1") == set()
