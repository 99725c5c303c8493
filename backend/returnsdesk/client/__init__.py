from returnsdesk.client.api import ApiError, ReturnsApiClient
from returnsdesk.client.store import ReturnRequestStore

__all__ = ["ApiError", "ReturnsApiClient", "ReturnRequestStore"]
