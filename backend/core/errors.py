"""Error kinds raised by the store, the auth layer and the handlers.

Each kind carries the HTTP status it is rendered with; ``main.py`` turns any
``StorefrontError`` into a plain-text response.
"""
from fastapi import status


class StorefrontError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "invalid request"


class NoCredential(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "no authorization credential"


class InvalidToken(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "invalid token"


class Forbidden(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "forbidden"


class NotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "not found"


class Conflict(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "conflict"


class InsufficientStock(Conflict):
    default_message = "insufficient stock"

    def __init__(self, item_id: int, requested: int, available: int = None):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        if available is None:
            message = f"Not enough stock for item {item_id}. Requested={requested}"
        else:
            message = f"Not enough stock for item {item_id}. Available={available} requested={requested}"
        super().__init__(message)


class StorageError(StorefrontError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "storage error"


class UpstreamError(StorefrontError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "identity provider request failed"
