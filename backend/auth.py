from __future__ import annotations
import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode

from passlib.context import CryptContext

from database import create_document, get_db
from notifications import NotificationCenter
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

USERS = "users"
OAUTH_PROVIDERS = {"google": "Google"}

AuthListener = Callable[[str, Optional[User]], Awaitable[None]]


class AccountExists(Exception):
    pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountStore:
    async def create(self, email: str, password: str) -> User:
        db = await get_db()
        email = normalize_email(email)
        if await db[USERS].find_one({"email": email}):
            raise AccountExists(email)
        doc = await create_document(USERS, {"email": email, "password_hash": pwd_context.hash(password)})
        return User(id=doc["id"], email=email)

    async def verify(self, email: str, password: str) -> Optional[User]:
        db = await get_db()
        doc = await db[USERS].find_one({"email": normalize_email(email)})
        if not doc or not pwd_context.verify(password, doc.get("password_hash", "")):
            return None
        return User(id=str(doc["_id"]), email=doc["email"])


class AuthSession:
    """Holds the signed-in user of one visitor and tells listeners about changes."""

    def __init__(
        self,
        accounts: AccountStore,
        notifications: NotificationCenter,
        oauth_authorize_url: Optional[str] = None,
    ):
        self.accounts = accounts
        self.notifications = notifications
        self.oauth_authorize_url = oauth_authorize_url
        self.user: Optional[User] = None
        self._listeners: list[AuthListener] = []

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def subscribe(self, listener: AuthListener) -> None:
        self._listeners.append(listener)

    async def _emit(self, event: str) -> None:
        for listener in self._listeners:
            await listener(event, self.user)

    async def sign_up(self, email: str, password: str) -> Optional[User]:
        try:
            user = await self.accounts.create(email, password)
        except AccountExists:
            self.notifications.show("Já existe uma conta com este e-mail.", "error")
            return None
        except Exception:
            logger.exception("Sign up failed")
            self.notifications.show("Falha ao criar conta.", "error")
            return None
        logger.info("Created account %s", user.id)
        self.notifications.show("Conta criada com sucesso! Já pode iniciar sessão.", "success")
        return user

    async def login(self, email: str, password: str) -> Optional[User]:
        try:
            user = await self.accounts.verify(email, password)
        except Exception:
            logger.exception("Login failed")
            self.notifications.show("Falha no login.", "error")
            return None
        if user is None:
            self.notifications.show("Credenciais inválidas.", "error")
            return None
        if self.user is not None:
            if self.user.id == user.id:
                return self.user
            await self.logout()

        self.user = user
        self.notifications.show("Login bem-sucedido!", "success")
        await self._emit("SIGNED_IN")
        return user

    async def logout(self) -> None:
        if self.user is None:
            return
        self.user = None
        self.notifications.show("Logout efetuado.", "info")
        await self._emit("SIGNED_OUT")

    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> Optional[str]:
        """URL of the hosted auth service's authorize page for `provider`."""
        label = OAUTH_PROVIDERS.get(provider)
        if label is None or not self.oauth_authorize_url:
            logger.warning("OAuth sign in unavailable for provider %r", provider)
            self.notifications.show(f"Falha no login com {label or provider}.", "error")
            return None
        return f"{self.oauth_authorize_url}?{urlencode({'provider': provider, 'redirect_to': redirect_to})}"
