from __future__ import annotations
import logging
from typing import Any, Optional

from catalog import PRODUCTS, product_from_row
from database import create_document, get_db, get_documents, to_object_id, utcnow
from schemas import Order, OrderLine, ShippingAddress

logger = logging.getLogger(__name__)

ORDERS = "orders"
ORDER_ITEMS = "order_items"

UNKNOWN_PRODUCT = "Produto Desconhecido"


class OrderGateway:
    """Order headers live in `orders`, their lines in `order_items`."""

    async def create_header(
        self,
        user_id: Optional[str],
        total_amount: float,
        shipping_address: ShippingAddress,
        payment_method: Optional[str],
    ) -> dict[str, Any]:
        return await create_document(ORDERS, {
            "user_id": user_id,
            "total_amount": total_amount,
            "shipping_address": shipping_address.model_dump(),
            "payment_method_id": payment_method,
            "status": "Pending",
        })

    async def create_lines(self, order_id: str, lines: list[OrderLine]) -> None:
        db = await get_db()
        now = utcnow()
        await db[ORDER_ITEMS].insert_many([
            {
                "order_id": order_id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "price_at_purchase": line.price_at_purchase,
                "created_at": now,
            }
            for line in lines
        ])

    async def delete_header(self, order_id: str) -> None:
        db = await get_db()
        await db[ORDERS].delete_one({"_id": to_object_id(order_id)})

    async def history(self, user_id: str) -> list[Order]:
        headers = await get_documents(ORDERS, {"user_id": user_id}, sort=[("created_at", -1)])
        return await self._materialize(headers)

    async def get(self, order_id: str, user_id: Optional[str]) -> Optional[Order]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        headers = await get_documents(ORDERS, {"_id": oid, "user_id": user_id}, limit=1)
        orders = await self._materialize(headers)
        return orders[0] if orders else None

    async def _materialize(self, headers: list[dict[str, Any]]) -> list[Order]:
        if not headers:
            return []
        lines = await get_documents(ORDER_ITEMS, {"order_id": {"$in": [h["id"] for h in headers]}})

        # Product details come from the current catalog, not from the time of purchase.
        oids = [oid for oid in {to_object_id(l["product_id"]) for l in lines} if oid is not None]
        products = {p["id"]: product_from_row(p) for p in await get_documents(PRODUCTS, {"_id": {"$in": oids}})}

        lines_by_order: dict[str, list[OrderLine]] = {}
        for l in lines:
            product = products.get(l["product_id"])
            lines_by_order.setdefault(l["order_id"], []).append(OrderLine(
                product_id=l["product_id"],
                name=product.name if product else UNKNOWN_PRODUCT,
                category=product.category if product else "N/A",
                image_urls=product.image_urls[:1] if product else [],
                quantity=l["quantity"],
                price_at_purchase=l["price_at_purchase"],
            ))

        return [
            Order(
                id=h["id"],
                user_id=h.get("user_id"),
                items=lines_by_order.get(h["id"], []),
                total_amount=h["total_amount"],
                shipping_address=ShippingAddress(**h.get("shipping_address", {})),
                payment_method=h.get("payment_method_id"),
                order_date=h["created_at"],
                status=h.get("status", "Pending"),
            )
            for h in headers
        ]
