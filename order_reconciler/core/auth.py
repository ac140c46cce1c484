"""
Bearer-token resolution into a typed principal.

A verified token must carry a ``role`` claim plus the subject claim that
role requires. Verification failures and claim failures are kept apart:
the former are ``UnauthenticatedError`` (401), the latter ``ForbiddenError``
(403).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

import jwt
import structlog

from .errors import ForbiddenError, UnauthenticatedError

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Principal roles allowed to own orders."""

    USER = "user"
    VENDOR = "vendor"


# Claim that carries the subject id for each role.
SUBJECT_CLAIMS: Mapping[Role, str] = {
    Role.USER: "userId",
    Role.VENDOR: "vendorId",
}

if set(SUBJECT_CLAIMS) != set(Role):
    raise RuntimeError("every role needs a subject claim")


@dataclass(frozen=True)
class Principal:
    """Authenticated actor on whose behalf an order operation runs."""

    role: Role
    subject_id: str

    @property
    def subject_claim(self) -> str:
        return SUBJECT_CLAIMS[self.role]


def extract_bearer_token(header: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization`` header.

    Raises:
        UnauthenticatedError: If the header is absent or not a bearer credential
    """
    if not header:
        logger.info("auth_token_missing")
        raise UnauthenticatedError("Authentication token is missing")

    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        logger.info("auth_header_malformed")
        raise UnauthenticatedError("Authorization header must be 'Bearer <token>'")
    return token


class AuthContextResolver:
    """Verifies bearer tokens against the server-held secret."""

    def __init__(self, secret: str, algorithms: Sequence[str] = ("HS256",)):
        """
        Initialize resolver.

        Args:
            secret: Shared signing secret
            algorithms: Accepted signing algorithms
        """
        self.secret = secret
        self.algorithms = list(algorithms)

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=self.algorithms)
        except jwt.ExpiredSignatureError:
            logger.info("auth_token_expired")
            raise UnauthenticatedError("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.info("auth_token_verification_failed", error=str(e))
            raise UnauthenticatedError("Token verification failed")

    def resolve(self, token: str) -> Principal:
        """
        Verify a token and derive its principal.

        Args:
            token: Encoded bearer token

        Returns:
            Principal: Role and subject id from the token claims

        Raises:
            UnauthenticatedError: If the token cannot be verified
            ForbiddenError: If the role or subject claim is missing or invalid
        """
        claims = self._decode(token)

        raw_role = claims.get("role")
        if not raw_role:
            logger.info("auth_role_missing")
            raise ForbiddenError("Role is missing in the token")

        try:
            role = Role(raw_role)
        except ValueError:
            logger.info("auth_role_invalid", role=str(raw_role))
            raise ForbiddenError(f"Invalid role in token: {raw_role}")

        subject_claim = SUBJECT_CLAIMS[role]
        subject_id = claims.get(subject_claim)
        if subject_id is None or str(subject_id) == "":
            logger.info("auth_subject_missing", role=role.value, claim=subject_claim)
            raise ForbiddenError(f"Token for role '{role.value}' is missing {subject_claim}")

        principal = Principal(role=role, subject_id=str(subject_id))
        structlog.contextvars.bind_contextvars(
            principal_role=principal.role.value,
            subject_id=principal.subject_id,
        )
        return principal

    def resolve_header(self, header: Optional[str]) -> Principal:
        """Resolve a principal straight from an ``Authorization`` header."""
        return self.resolve(extract_bearer_token(header))
