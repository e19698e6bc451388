"""Bearer token validation shared by the WebSocket handshake and the HTTP API.

Tokens are issued elsewhere (the login endpoint of the POS backend). This
module only verifies them:

- signature and algorithm (``JWT_SECRET`` / ``JWT_ALGORITHM``)
- ``exp`` must be present and in the future
- ``id``, ``email`` and ``role`` claims must be present
- ``role`` must be one of ``VALID_ROLES``
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import jwt

from constants import JWT_ALGORITHM, JWT_SECRET, VALID_ROLES
from exceptions import AuthenticationError, ConfigurationError
from logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_CLAIMS = ("id", "email", "role")


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    role: str


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TokenValidator:
    def __init__(self, secret: Optional[str] = None, algorithms: Optional[Iterable[str]] = None):
        self.secret = secret if secret is not None else JWT_SECRET
        self.algorithms = list(algorithms) if algorithms else [JWT_ALGORITHM]

    def validate(self, token: Optional[str]) -> Identity:
        if not token:
            logger.warning("Connection rejected: no token provided")
            raise AuthenticationError(AuthenticationError.TOKEN_REQUIRED)

        if not self.secret:
            logger.error("JWT_SECRET not configured")
            raise ConfigurationError(ConfigurationError.REASON)

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.warning("Connection rejected: token expired")
            raise AuthenticationError(AuthenticationError.TOKEN_EXPIRED, str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            logger.warning(f"Connection rejected: invalid token ({exc})")
            raise AuthenticationError(AuthenticationError.TOKEN_INVALID, str(exc)) from exc

        return self._identity_from_claims(claims)

    def _identity_from_claims(self, claims: dict[str, Any]) -> Identity:
        missing = [name for name in REQUIRED_CLAIMS if claims.get(name) in (None, "")]
        if missing:
            logger.warning(f"Connection rejected: token payload missing {missing}")
            raise AuthenticationError(
                AuthenticationError.TOKEN_INVALID, f"missing claims: {', '.join(missing)}"
            )

        role = claims["role"]
        if role not in VALID_ROLES:
            logger.warning(f"Connection rejected: invalid role {role!r}")
            raise AuthenticationError(AuthenticationError.TOKEN_INVALID, f"invalid role: {role}")

        return Identity(id=str(claims["id"]), email=str(claims["email"]), role=role)
