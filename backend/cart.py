"""
Cart reconciliation between the visitor's local storage and the remote cart.

Anonymous visitors keep their cart in the local store and every mutation is
written back immediately. Once a user signs in, the local cart is merged
into the remote one (per product the larger quantity wins, quantities are
never summed) and from then on mutations are applied in memory first and
written to the remote store through debounced calls. A failed remote write
is reported but never rolled back, so memory and the remote store can drift
apart until the next successful write for the same product.
"""
from __future__ import annotations
import logging
from typing import Any, Awaitable, Callable, Optional

from pydantic import TypeAdapter, ValidationError

from cart_store import CartStore
from catalog import ProductCatalog
from debounce import Debouncer
from local_store import CART_KEY, LocalStore
from notifications import NotificationCenter
from schemas import CartItem, Product, User

logger = logging.getLogger(__name__)

_cart_items = TypeAdapter(list[CartItem])

SYNC_ERROR = "Erro ao sincronizar o carrinho."


class CartReconciler:
    def __init__(
        self,
        store: CartStore,
        local: LocalStore,
        catalog: ProductCatalog,
        notifications: NotificationCenter,
        debouncer: Optional[Debouncer] = None,
        upsert_delay: float = 1.0,
        remove_delay: float = 0.5,
        clear_delay: float = 0.5,
    ):
        self.store = store
        self.local = local
        self.catalog = catalog
        self.notifications = notifications
        self.debouncer = debouncer or Debouncer()
        self.upsert_delay = upsert_delay
        self.remove_delay = remove_delay
        self.clear_delay = clear_delay

        self.user_id: Optional[str] = None
        self.merging = False
        self.items: list[CartItem] = self._load_local()

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    # Local realm

    def _load_local(self) -> list[CartItem]:
        raw = self.local.get_item(CART_KEY)
        if not raw:
            return []
        try:
            return _cart_items.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable local cart")
            self.local.remove_item(CART_KEY)
            return []

    def _save_local(self) -> None:
        self.local.set_item(CART_KEY, _cart_items.dump_json(self.items).decode())

    # Remote realm

    async def _remote_call(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        try:
            await fn(*args)
        except Exception:
            logger.exception("Remote cart call %s%r failed", fn.__name__, args)
            self.notifications.show(SYNC_ERROR, "error")

    def _schedule_upsert(self, item: CartItem) -> None:
        user_id, product_id, quantity = self.user_id, item.product_id, item.quantity
        self.debouncer.schedule(
            ("upsert", user_id, product_id),
            self.upsert_delay,
            lambda: self._remote_call(self.store.upsert, user_id, product_id, quantity),
        )

    def _schedule_remove(self, product_id: str) -> None:
        user_id = self.user_id
        self.debouncer.schedule(
            ("remove", user_id, product_id),
            self.remove_delay,
            lambda: self._remote_call(self.store.delete, user_id, product_id),
        )

    def _schedule_clear(self) -> None:
        user_id = self.user_id
        # A later per-product write would put cleared rows back.
        for key in self.debouncer.pending_keys:
            if key[0] in ("upsert", "remove") and key[1] == user_id:
                self.debouncer.cancel(key)
        self.debouncer.schedule(
            ("clear", user_id),
            self.clear_delay,
            lambda: self._remote_call(self.store.clear, user_id),
        )

    def _changed(self, item: CartItem) -> None:
        if self.authenticated:
            self._schedule_upsert(item)
        else:
            self._save_local()

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.product_id == product_id), None)

    def _replace(self, item: CartItem) -> None:
        self.items = [item if i.product_id == item.product_id else i for i in self.items]

    # Operations

    def add_to_cart(self, product: Product, quantity: int = 1) -> Optional[CartItem]:
        if product.stock <= 0:
            self.notifications.show(f"{product.name} está esgotado.", "info")
            return None

        existing = self._find(product.id)
        if existing is not None:
            new_quantity = max(1, min(existing.quantity + quantity, product.stock))
            if new_quantity > existing.quantity:
                self.notifications.show(f"{product.name} adicionado ao carrinho!", "success")
            elif quantity > 0 and new_quantity == existing.quantity == product.stock:
                self.notifications.show(
                    f"Quantidade máxima de {product.name} ({product.stock}) já está no carrinho.", "info"
                )
            item = CartItem(product=product, quantity=new_quantity)
            self._replace(item)
        else:
            item = CartItem(product=product, quantity=max(1, min(quantity, product.stock)))
            self.items = [*self.items, item]
            self.notifications.show(f"{product.name} adicionado ao carrinho!", "success")

        self._changed(item)
        return item

    def remove_from_cart(self, product_id: str) -> None:
        item = self._find(product_id)
        if item is None:
            return
        self.items = [i for i in self.items if i.product_id != product_id]
        self.notifications.show(f"{item.product.name} removido do carrinho.", "info")
        if self.authenticated:
            self._schedule_remove(product_id)
        else:
            self._save_local()

    def update_quantity(self, product_id: str, quantity: int) -> Optional[CartItem]:
        item = self._find(product_id)
        if item is None:
            return None
        item = item.model_copy(update={"quantity": max(1, min(quantity, item.product.stock))})
        self._replace(item)
        self._changed(item)
        return item

    def clear_cart(self) -> None:
        self.items = []
        self.notifications.show("Carrinho esvaziado.", "info")
        if self.authenticated:
            self._schedule_clear()
        else:
            self._save_local()

    def get_total_price(self) -> float:
        return sum(i.product.price * i.quantity for i in self.items)

    def get_item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    # Realm transitions

    async def handle_auth_event(self, event: str, user: Optional[User]) -> None:
        if event == "SIGNED_IN" and user is not None:
            await self.sign_in(user.id)
        elif event == "SIGNED_OUT":
            self.sign_out()

    async def sign_in(self, user_id: str) -> None:
        if self.user_id == user_id:
            return
        self.merging = True
        try:
            await self._merge(user_id)
        finally:
            self.merging = False

    async def _merge(self, user_id: str) -> None:
        try:
            rows = await self.store.fetch(user_id)
        except Exception:
            logger.exception("Could not load remote cart for %s", user_id)
            self.notifications.show(SYNC_ERROR, "error")
            # Keep the local copy around so nothing is lost.
            self.user_id = user_id
            return

        if not await self.catalog.ensure_loaded():
            logger.warning("Catalog is empty, skipping cart merge for %s", user_id)
            self.user_id = user_id
            return

        merged: dict[str, CartItem] = {}
        for item in self.items:
            product = self.catalog.find(item.product_id) or item.product
            merged[item.product_id] = CartItem(product=product, quantity=item.quantity)
        for row in rows:
            product = self.catalog.find(row["product_id"])
            if product is None:
                logger.info("Dropping remote cart row for unknown product %s", row["product_id"])
                continue
            quantity = max(1, row["quantity"])
            local = merged.get(product.id)
            if local is None or quantity > local.quantity:
                merged[product.id] = CartItem(product=product, quantity=quantity)

        self.items = list(merged.values())
        self.user_id = user_id
        for item in self.items:
            self._schedule_upsert(item)
        self.local.remove_item(CART_KEY)
        logger.info("Merged cart for %s: %d items from %d remote rows", user_id, len(self.items), len(rows))

    def sign_out(self) -> None:
        self.user_id = None
        self.items = self._load_local()
