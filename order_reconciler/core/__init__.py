"""Core order logic: principals, error taxonomy and the order lifecycle."""
from .auth import AuthContextResolver, Principal, Role, extract_bearer_token
from .errors import (
    ForbiddenError,
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
    ProviderError,
    SignatureInvalidError,
    StoreError,
    UnauthenticatedError,
)

__all__ = [
    "AuthContextResolver",
    "ForbiddenError",
    "OrderError",
    "OrderNotFoundError",
    "OrderValidationError",
    "Principal",
    "ProviderError",
    "Role",
    "SignatureInvalidError",
    "StoreError",
    "UnauthenticatedError",
    "extract_bearer_token",
]
