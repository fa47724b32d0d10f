"""
User Session

Holds the active user and their ID token. Every store query downstream
is scoped by session.require_user().id.
"""

from typing import Optional

from hisabkitab.audit import AuditLogger
from hisabkitab.models.audit import AuditEventBuilder
from hisabkitab.models.finance import User
from hisabkitab.services.auth.identity import IdentityProvider, SignInResult
from hisabkitab.services.storage.interface import (
    UnauthenticatedError,
    UserStore,
    ValidationError,
)


class AuthSession:
    """
    The local session object consumed by every other component.

    Sign-in and sign-up upsert the user's profile document when a
    UserStore is configured.
    """

    def __init__(
        self,
        provider: Optional[IdentityProvider] = None,
        user_store: Optional[UserStore] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._provider = provider
        self._user_store = user_store
        self._audit_logger = audit_logger or AuditLogger()
        self._user: Optional[User] = None
        self._id_token: Optional[str] = None

    @classmethod
    def for_user(cls, user: User, id_token: Optional[str] = None, **kwargs) -> "AuthSession":
        """Session for a user already verified elsewhere (e.g. a server-checked token)."""
        session = cls(**kwargs)
        session._user = user
        session._id_token = id_token
        return session

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def id_token(self) -> Optional[str]:
        return self._id_token

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def require_user(self) -> User:
        """The active user, or UnauthenticatedError."""
        if self._user is None:
            raise UnauthenticatedError("User not authenticated")
        return self._user

    def _require_provider(self) -> IdentityProvider:
        if self._provider is None:
            raise UnauthenticatedError("No identity provider configured")
        return self._provider

    async def _activate(self, result: SignInResult) -> User:
        user = result.user
        if self._user_store:
            stored = await self._user_store.get_user(user.id)
            if stored is not None and not user.name:
                user = user.model_copy(update={"name": stored.name, "phone": stored.phone})
            user = await self._user_store.upsert_user(user)
        self._user = user
        self._id_token = result.id_token
        return user

    async def sign_in_with_email(self, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("Email and password are required")
        result = await self._require_provider().sign_in_with_email(email, password)
        user = await self._activate(result)
        await self._audit_logger.log(AuditEventBuilder.user_signed_in(user.id, "email"))
        return user

    async def sign_up_with_email(self, email: str, password: str, name: str) -> User:
        if not email or not password or not name.strip():
            raise ValidationError("Name, email and password are required")
        result = await self._require_provider().sign_up_with_email(email, password, name.strip())
        user = await self._activate(result)
        await self._audit_logger.log(AuditEventBuilder.user_signed_up(user.id, user.email))
        return user

    async def sign_in_with_google(self, google_id_token: str) -> User:
        result = await self._require_provider().sign_in_with_google(google_id_token)
        user = await self._activate(result)
        if result.is_new_user:
            await self._audit_logger.log(AuditEventBuilder.user_signed_up(user.id, user.email))
        await self._audit_logger.log(AuditEventBuilder.user_signed_in(user.id, "google"))
        return user

    async def sign_out(self) -> None:
        """Forget the local session. Firebase ID tokens simply expire."""
        if self._user is None:
            return
        user_id = self._user.id
        self._user = None
        self._id_token = None
        await self._audit_logger.log(AuditEventBuilder.user_signed_out(user_id))

    async def update_profile(self, name: Optional[str] = None) -> User:
        user = self.require_user()
        if name is None:
            return user
        name = name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")

        if self._provider is not None and self._id_token:
            await self._provider.update_profile(self._id_token, name)
        if self._user_store:
            if await self._user_store.get_user(user.id) is None:
                await self._user_store.upsert_user(user)
            user = await self._user_store.update_user(user.id, {"name": name})
        else:
            user = user.model_copy(update={"name": name})

        self._user = user
        await self._audit_logger.log(AuditEventBuilder.profile_updated(user.id, ["name"]))
        return user
