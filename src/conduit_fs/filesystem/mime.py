import mimetypes
from pathlib import Path

DEFAULT_MIME_TYPE = "application/octet-stream"

# Extensions the platform registry often lacks or labels inconsistently.
_EXTENSION_TYPES = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".xml": "application/xml",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".java": "text/x-java-source",
    ".py": "text/x-python",
    ".sh": "application/x-sh",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".toml": "application/toml",
    ".properties": "text/x-java-properties",
    ".gradle": "text/x-gradle",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
}


def guess_mime_type(path: str | Path) -> str:
    """Best-effort content type for `path`, never None."""
    suffix = Path(path).suffix.lower()
    if suffix in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(str(path), strict=False)
    return mime_type or DEFAULT_MIME_TYPE
