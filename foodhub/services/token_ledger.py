"""
Token Ledger

Issues, rotates and revokes refresh tokens.

Refresh Token Rotation:
    Every refresh consumes the presented token (it is revoked) and issues
    a new access/refresh pair. Only the bcrypt hash of a refresh token is
    ever stored; the plaintext is handed to the client exactly once.

Theft Detection:
    A refresh token that was already rotated can only be presented again
    by someone holding a copy of it. When that happens every active token
    of the user is revoked and the request fails, so both the attacker
    and the legitimate holder have to log in again.

Lookup:
    The refresh JWT identifies the user. All of that user's unexpired
    tokens (revoked ones included) are then verified against the
    presented plaintext, most recent first, stopping at the first match.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from foodhub.core.config import Settings
from foodhub.core.errors import (
    AuthenticationError,
    SecurityAlertError,
    TokenExpiredError,
    TokenNotFoundError,
)
from foodhub.models import DEVICE_INFO_LENGTH
from foodhub.services.security import (
    Clock,
    SecretHasher,
    TokenCodec,
    parse_duration,
    utcnow,
)
from foodhub.storage.base import (
    BaseGateway,
    RefreshTokenRecord,
    UnitOfWork,
    UserRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    """Plaintext credentials returned to the client."""
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    token_type: str = "bearer"


class TokenLedger:
    """
    Refresh token bookkeeping on top of the persistence gateway.

    Args:
        gateway: Persistence gateway
        codec: Signs and verifies the JWTs
        hasher: bcrypt hasher for the stored refresh token hashes
        refresh_token_expiry: "<int><d|h|m>" lifetime, parsed at every issue
        clock: Source of "now"
    """

    def __init__(
        self,
        gateway: BaseGateway,
        codec: TokenCodec,
        hasher: SecretHasher,
        refresh_token_expiry: str = "7d",
        clock: Optional[Clock] = None,
    ):
        self.gateway = gateway
        self.codec = codec
        self.hasher = hasher
        self.refresh_token_expiry = refresh_token_expiry
        self._clock = clock or utcnow

    @classmethod
    def from_settings(
        cls,
        gateway: BaseGateway,
        settings: Settings,
        clock: Optional[Clock] = None,
    ) -> "TokenLedger":
        return cls(
            gateway=gateway,
            codec=TokenCodec.from_settings(settings, clock=clock),
            hasher=SecretHasher(rounds=settings.token_hash_rounds),
            refresh_token_expiry=settings.refresh_token_expiry,
            clock=clock,
        )

    # =========================================================================
    # ISSUE
    # =========================================================================

    async def issue(
        self,
        user: UserRecord,
        device_info: Optional[str] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> TokenPair:
        """
        Create an access token and a stored refresh token for a user.

        Args:
            user: Token owner
            device_info: Optional device descriptor kept with the token,
                clipped to the column length
            uow: Write inside this transaction instead of opening a new one

        Returns:
            TokenPair: Plaintext tokens (the refresh plaintext is not kept)
        """
        ttl = parse_duration(self.refresh_token_expiry)
        now = self._clock()
        expires_at = now + ttl

        access_token = self.codec.create_access_token(user.id, user.email)
        refresh_token = self.codec.create_refresh_token(user.id, user.email, ttl)
        token_hash = await self.hasher.hash(refresh_token)

        record = RefreshTokenRecord(
            token_hash=token_hash,
            user_id=user.id,
            expires_at=expires_at,
            device_info=(device_info or "")[:DEVICE_INFO_LENGTH] or None,
            created_at=now,
        )

        if uow is not None:
            await uow.refresh_tokens.create(record)
        else:
            async with self.gateway.transaction() as tx:
                await tx.refresh_tokens.create(record)

        logger.debug(f"Issued refresh token for user {user.id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_expires_at=expires_at,
        )

    # =========================================================================
    # LOOKUP
    # =========================================================================

    async def _find_match(
        self,
        user_id: int,
        plaintext: str,
        include_revoked: bool = True,
    ) -> Optional[RefreshTokenRecord]:
        """Sequential bcrypt scan, newest first, first match wins."""
        async with self.gateway.transaction() as uow:
            candidates = await uow.refresh_tokens.list_unexpired_for_user(
                user_id, self._clock()
            )

        for candidate in candidates:
            if not include_revoked and candidate.is_revoked:
                continue
            if await self.hasher.verify(plaintext, candidate.token_hash):
                return candidate
        return None

    # =========================================================================
    # ROTATE
    # =========================================================================

    async def rotate(self, refresh_token: str, device_info: Optional[str] = None) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            InvalidTokenError: Not a well-formed refresh JWT of this system
            TokenNotFoundError: No stored token matches
            SecurityAlertError: The token was already rotated or revoked
            TokenExpiredError: The token expired while being checked
        """
        payload = self.codec.decode_refresh_token(refresh_token)
        user_id = payload["sub"]

        match = await self._find_match(user_id, refresh_token)
        if match is None:
            logger.info(f"Refresh attempt with unknown token for user {user_id}")
            raise TokenNotFoundError()

        if match.is_revoked:
            await self._handle_reuse(user_id, match)

        now = self._clock()
        if match.is_expired(now):
            async with self.gateway.transaction() as uow:
                await uow.refresh_tokens.update(match.id, is_revoked=True, revoked_at=now)
            logger.info(f"Expired refresh token {match.id} presented by user {user_id}")
            raise TokenExpiredError()

        reused = False
        async with self.gateway.transaction() as uow:
            current = await uow.refresh_tokens.get(match.id, for_update=True)
            if current is None or current.is_revoked:
                # Rotated by a concurrent request between the scan and the lock
                reused = True
            else:
                user = await uow.users.get(user_id)
                if user is None or not user.is_active:
                    raise TokenNotFoundError()

                await uow.refresh_tokens.update(
                    match.id,
                    is_revoked=True,
                    revoked_at=now,
                    last_used_at=now,
                )
                pair = await self.issue(
                    user,
                    device_info=device_info or current.device_info,
                    uow=uow,
                )

        if reused:
            await self._handle_reuse(user_id, match)

        logger.info(f"Rotated refresh token {match.id} for user {user_id}")
        return pair

    async def _handle_reuse(self, user_id: int, token: RefreshTokenRecord) -> None:
        revoked = await self.revoke_all(user_id)
        logger.error(
            f"🚨 SECURITY ALERT: revoked refresh token {token.id} reused for user "
            f"{user_id}. Revoked {revoked} active session(s)."
        )
        raise SecurityAlertError()

    # =========================================================================
    # REVOKE
    # =========================================================================

    async def revoke(self, refresh_token: str, caller_user_id: int) -> None:
        """
        Revoke one refresh token of the calling user (logout).

        Raises:
            InvalidTokenError: Not a well-formed refresh JWT
            AuthenticationError: The token belongs to someone else
            TokenNotFoundError: No active stored token matches
        """
        payload = self.codec.decode_refresh_token(refresh_token)
        if payload["sub"] != caller_user_id:
            raise AuthenticationError("Invalid refresh token")

        match = await self._find_match(caller_user_id, refresh_token, include_revoked=False)
        if match is None:
            raise TokenNotFoundError()

        async with self.gateway.transaction() as uow:
            await uow.refresh_tokens.update(
                match.id,
                is_revoked=True,
                revoked_at=self._clock(),
            )
        logger.info(f"User {caller_user_id} logged out token {match.id}")

    async def revoke_all(self, user_id: int) -> int:
        """
        Revoke every active refresh token of a user.

        Returns:
            int: Number of tokens revoked
        """
        async with self.gateway.transaction() as uow:
            count = await uow.refresh_tokens.revoke_all_for_user(user_id, self._clock())
        logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count
