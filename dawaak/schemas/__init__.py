from .admin import ImportRequest, ImportResponse, PurgeResponse
from .ai import ConsultRequest, ConsultResponse
from .auth import LoginRequest, RegisterRequest, TokenResponse
from .tables import PageResponse

__all__ = [
    "ConsultRequest",
    "ConsultResponse",
    "ImportRequest",
    "ImportResponse",
    "LoginRequest",
    "PageResponse",
    "PurgeResponse",
    "RegisterRequest",
    "TokenResponse",
]
