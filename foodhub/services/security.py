"""
Security Primitives

Slow salted hashing for passwords and refresh tokens, and signed JWT
encoding/decoding for access and refresh credentials.

Hashing:
    bcrypt (via passlib) with a configurable cost factor. Secrets are
    SHA-256 pre-hashed first because bcrypt only looks at the first 72
    bytes of its input, and every JWT issued to the same user shares a
    much longer common prefix than that.

Tokens:
    HS256 JWTs (python-jose). Access and refresh tokens are signed with
    different keys and carry a `token_type` claim, so one can never be
    replayed as the other.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from foodhub.core.config import DURATION_PATTERN, Settings
from foodhub.core.errors import InvalidTokenError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_REFRESH_TTL = timedelta(days=7)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_duration(text: str, default: timedelta = DEFAULT_REFRESH_TTL) -> timedelta:
    """
    Parse a "<int><d|h|m>" duration string.

    Args:
        text: Duration such as "7d", "24h" or "30m"
        default: Returned (with a warning) when text is malformed or not positive

    Returns:
        timedelta: Parsed duration
    """
    match = DURATION_PATTERN.match((text or "").strip())
    if not match:
        logger.warning(
            f'Invalid duration format: "{text}". Defaulting to {default}. '
            f'Expected format: "7d", "24h", or "30m"'
        )
        return default

    value = int(match.group(1))
    if value <= 0:
        logger.warning(f'Non-positive duration: "{text}". Defaulting to {default}.')
        return default

    unit = match.group(2)
    if unit == "d":
        return timedelta(days=value)
    if unit == "h":
        return timedelta(hours=value)
    return timedelta(minutes=value)


# =============================================================================
# HASHING
# =============================================================================

class SecretHasher:
    """
    bcrypt hashing of passwords and refresh token plaintexts.

    hash() and verify() are coroutines: bcrypt is CPU-bound by design, so
    the work runs in a worker thread and the event loop keeps serving
    other requests.

    Example:
        >>> hasher = SecretHasher(rounds=10)
        >>> stored = await hasher.hash("s3cret-password")
        >>> await hasher.verify("s3cret-password", stored)
        True
    """

    def __init__(self, rounds: int = 10):
        self.rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    @staticmethod
    def _prehash(secret: str) -> str:
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def hash_sync(self, secret: str) -> str:
        return self._context.hash(self._prehash(secret))

    def verify_sync(self, secret: str, hashed: str) -> bool:
        try:
            return self._context.verify(self._prehash(secret), hashed)
        except ValueError:
            # Malformed stored hash
            logger.warning("Stored hash could not be parsed; treating as mismatch")
            return False

    async def hash(self, secret: str) -> str:
        return await asyncio.to_thread(self.hash_sync, secret)

    async def verify(self, secret: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        return await asyncio.to_thread(self.verify_sync, secret, hashed)


# =============================================================================
# SIGNED TOKENS
# =============================================================================

class TokenCodec:
    """
    Encode and decode signed access / refresh tokens.

    Payload claims:
        sub: user id (string)
        email: user email
        token_type: "access" or "refresh"
        jti: random id, keeps two tokens issued in the same second distinct
        iat / exp: issue and expiry instants (unix seconds)

    Expiry is checked against the injected clock, not the wall clock,
    so tests can move time.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        clock: Optional[Clock] = None,
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self._clock = clock or utcnow

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=parse_duration(settings.access_token_expiry, timedelta(minutes=15)),
            clock=clock,
        )

    def _secret_for(self, token_type: str) -> str:
        return self.access_secret if token_type == ACCESS_TOKEN else self.refresh_secret

    def encode(self, user_id: int, email: str, token_type: str, ttl: timedelta) -> str:
        issued_at = self._clock()
        payload = {
            "sub": str(user_id),
            "email": email,
            "token_type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret_for(token_type), algorithm=self.algorithm)

    def create_access_token(self, user_id: int, email: str) -> str:
        return self.encode(user_id, email, ACCESS_TOKEN, self.access_ttl)

    def create_refresh_token(self, user_id: int, email: str, ttl: timedelta) -> str:
        return self.encode(user_id, email, REFRESH_TOKEN, ttl)

    def decode(self, token: str, token_type: str) -> dict[str, Any]:
        """
        Verify signature, type and expiry.

        Returns:
            dict: Payload with `sub` converted to int

        Raises:
            InvalidTokenError: Any verification failure
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_for(token_type),
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug(f"Token decode failed: {e}")
            raise InvalidTokenError()

        if payload.get("token_type") != token_type:
            raise InvalidTokenError()

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._clock().timestamp() >= exp:
            raise InvalidTokenError()

        try:
            payload["sub"] = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError()

        return payload

    def decode_access_token(self, token: str) -> dict[str, Any]:
        return self.decode(token, ACCESS_TOKEN)

    def decode_refresh_token(self, token: str) -> dict[str, Any]:
        return self.decode(token, REFRESH_TOKEN)
