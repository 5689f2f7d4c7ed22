"""Services for multipart_uploader module."""
from .api_client import HTTPAPIClient
from .backend import BackendClient
from .source import BytesByteSource, FileByteSource
from .transport import HTTPTransport

__all__ = [
    "HTTPAPIClient",
    "BackendClient",
    "BytesByteSource",
    "FileByteSource",
    "HTTPTransport",
]
