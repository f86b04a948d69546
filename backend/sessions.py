from __future__ import annotations
import logging
import secrets
import time
from typing import Optional

from auth import AccountStore, AuthSession
from cart import CartReconciler
from cart_store import CartStore
from catalog import ProductCatalog, ProductGateway
from checkout import CheckoutFlow
from database import Settings
from local_store import LocalStore
from notifications import NotificationCenter
from orders import OrderGateway
from storage import ImageBucket

logger = logging.getLogger(__name__)

SESSION_COOKIE = "angotech_session"


class StorefrontSession:
    """Everything one visitor's storefront needs, sharing one notification slot."""

    def __init__(self, session_id: str, settings: Settings, bucket: ImageBucket):
        self.id = session_id
        self.last_seen = time.monotonic()

        self.notifications = NotificationCenter(settings.NOTIFICATION_DURATION)
        self.local = LocalStore()
        self.catalog = ProductCatalog(ProductGateway(bucket), self.notifications, settings.CATALOG_MAX_AGE)
        self.auth = AuthSession(AccountStore(), self.notifications, settings.OAUTH_AUTHORIZE_URL)
        self.cart = CartReconciler(
            CartStore(),
            self.local,
            self.catalog,
            self.notifications,
            upsert_delay=settings.CART_UPSERT_DEBOUNCE,
            remove_delay=settings.CART_REMOVE_DEBOUNCE,
            clear_delay=settings.CART_CLEAR_DEBOUNCE,
        )
        self.orders = OrderGateway()
        self.checkout = CheckoutFlow(self.cart, self.orders, self.notifications)

        self.auth.subscribe(self.cart.handle_auth_event)

    def touch(self) -> None:
        self.last_seen = time.monotonic()


class SessionRegistry:
    def __init__(self, settings: Settings, bucket: ImageBucket):
        self.settings = settings
        self.bucket = bucket
        self._sessions: dict[str, StorefrontSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _ttl(self, session: StorefrontSession) -> int:
        # Nothing to lose yet: no user and nothing in the cart.
        if session.auth.user is None and not session.cart.items:
            return self.settings.ANON_SESSION_TTL_SECONDS
        return self.settings.SESSION_TTL_SECONDS

    def _evict_idle(self) -> None:
        now = time.monotonic()
        for sid in [sid for sid, s in self._sessions.items() if now - s.last_seen > self._ttl(s)]:
            # Pending remote cart writes still fire; only the in-memory state goes.
            del self._sessions[sid]
            logger.debug("Evicted idle session %s", sid)

    def get(self, session_id: Optional[str]) -> Optional[StorefrontSession]:
        self._evict_idle()
        session = self._sessions.get(session_id) if session_id else None
        if session is not None:
            session.touch()
        return session

    def create(self) -> StorefrontSession:
        while self._sessions and len(self._sessions) >= self.settings.MAX_SESSIONS:
            oldest = min(self._sessions.values(), key=lambda s: s.last_seen)
            del self._sessions[oldest.id]
            logger.warning("Session limit %d reached, evicted %s", self.settings.MAX_SESSIONS, oldest.id)
        session = StorefrontSession(secrets.token_urlsafe(24), self.settings, self.bucket)
        self._sessions[session.id] = session
        return session

    async def flush(self) -> None:
        for session in list(self._sessions.values()):
            await session.cart.debouncer.flush()
