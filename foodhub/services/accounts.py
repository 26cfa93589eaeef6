"""
Account Service

Registration, password login, Google login/linking and access token
authentication. Every successful path ends with a fresh token pair
issued by the TokenLedger.

Passwords are hashed explicitly here, before the user record is built.
Storage never hashes anything on its own.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Optional

from foodhub.core.errors import (
    AccountDisabledError,
    AuthenticationError,
    ConflictError,
    CredentialRequiredError,
    InvalidCredentialsError,
    InvalidTokenError,
    StateConflictError,
)
from foodhub.services.security import Clock, SecretHasher, TokenCodec, utcnow
from foodhub.services.token_ledger import TokenLedger, TokenPair
from foodhub.storage.base import BaseGateway, UserRecord

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class AuthResult:
    """Authenticated user plus the tokens issued for this session."""
    user: UserRecord
    tokens: TokenPair
    message: str


class AccountService:
    """
    User-facing authentication flows.

    Example:
        >>> accounts = AccountService(gateway, ledger)
        >>> result = await accounts.login("ana@example.com", "pw", "curl/8.0")
        >>> result.tokens.access_token
    """

    def __init__(
        self,
        gateway: BaseGateway,
        ledger: TokenLedger,
        hasher: Optional[SecretHasher] = None,
        codec: Optional[TokenCodec] = None,
        clock: Optional[Clock] = None,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.hasher = hasher or ledger.hasher
        self.codec = codec or ledger.codec
        self._clock = clock or utcnow

    def _device(self, device_info: Optional[str]) -> str:
        return device_info or f"New Device: {self._clock().isoformat()}"

    async def _create_user(self, record: UserRecord) -> UserRecord:
        if not record.has_credential:
            raise CredentialRequiredError()
        async with self.gateway.transaction() as uow:
            return await uow.users.create(record)

    # =========================================================================
    # REGISTER / LOGIN
    # =========================================================================

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> AuthResult:
        """
        Create a password account and log it in.

        Raises:
            ConflictError: Email already registered
            CredentialRequiredError: Empty password
        """
        email = normalize_email(email)

        async with self.gateway.transaction() as uow:
            existing = await uow.users.get_by_email(email)
        if existing is not None:
            raise ConflictError("Email already exists. Please use the login endpoint.")

        password_hash = await self.hasher.hash(password) if password else None
        user = await self._create_user(
            UserRecord(
                email=email,
                name=name,
                password_hash=password_hash,
                phone_number=phone_number,
                address=address,
            )
        )
        logger.info(f"Registered user {user.id} ({user.email})")

        tokens = await self.ledger.issue(user, self._device(device_info))
        return AuthResult(user, tokens, "User registered and logged in successfully")

    async def login(
        self,
        email: str,
        password: str,
        device_info: Optional[str] = None,
    ) -> AuthResult:
        """
        Password login.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AuthenticationError: Account has no password (Google only)
            AccountDisabledError: Account is inactive
        """
        email = normalize_email(email)

        async with self.gateway.transaction() as uow:
            user = await uow.users.get_by_email(email)

        if user is None:
            raise InvalidCredentialsError()
        if not user.password_hash:
            raise AuthenticationError("Please use Google OAuth to login with this account")
        if not await self.hasher.verify(password, user.password_hash):
            logger.info(f"Failed login for user {user.id}")
            raise InvalidCredentialsError()
        if not user.is_active:
            raise AccountDisabledError()

        tokens = await self.ledger.issue(user, self._device(device_info))
        return AuthResult(user, tokens, "Login successful")

    async def authenticate_external(
        self,
        email: str,
        google_id: str,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> AuthResult:
        """
        Google login. Logs in a known Google id, links the Google id to an
        existing password account with the same email, or registers a new
        account.

        Raises:
            AccountDisabledError: Matched account is inactive
            ConflictError: Email already linked to another Google id
            StateConflictError: New account without a name
        """
        email = normalize_email(email)
        by_email = linked = None

        async with self.gateway.transaction() as uow:
            by_google_id = await uow.users.get_by_google_id(google_id)
            if by_google_id is None:
                by_email = await uow.users.get_by_email(email)
                if by_email is not None:
                    if by_email.google_id:
                        raise ConflictError("Email already exists with a different Google account")
                    if not by_email.is_active:
                        raise AccountDisabledError()
                    linked = await uow.users.update(by_email.id, google_id=google_id)

        if by_google_id is not None:
            if not by_google_id.is_active:
                raise AccountDisabledError()
            tokens = await self.ledger.issue(by_google_id, self._device(device_info))
            return AuthResult(by_google_id, tokens, "Login successful")

        if by_email is not None:
            logger.info(f"Linked Google account to user {linked.id}")
            tokens = await self.ledger.issue(linked, self._device(device_info))
            return AuthResult(linked, tokens, "Google account linked successfully")

        if not name or not name.strip():
            raise StateConflictError("Name is required for new user registration")

        user = await self._create_user(
            UserRecord(
                email=email,
                name=name.strip(),
                google_id=google_id,
                phone_number=phone_number,
                address=address,
            )
        )
        logger.info(f"Registered user {user.id} via Google")
        tokens = await self.ledger.issue(user, self._device(device_info))
        return AuthResult(user, tokens, "Registration and login successful")

    # =========================================================================
    # ACCESS TOKENS
    # =========================================================================

    async def authenticate_access_token(self, token: str) -> UserRecord:
        """
        Resolve a bearer access token to its user.

        Raises:
            InvalidTokenError: Bad signature, wrong type, expired
            AuthenticationError: User no longer exists
            AccountDisabledError: User is inactive
        """
        try:
            payload = self.codec.decode_access_token(token)
        except InvalidTokenError:
            raise AuthenticationError("Invalid or expired access token")

        async with self.gateway.transaction() as uow:
            user = await uow.users.get(payload["sub"])

        if user is None:
            raise AuthenticationError("Invalid or expired access token")
        if not user.is_active:
            raise AccountDisabledError()
        return user
