from __future__ import annotations
from typing import Any

from database import get_db, utcnow

USER_CARTS = "user_carts"


class CartStore:
    """Remote cart: one row per (user_id, product_id) holding a quantity."""

    async def fetch(self, user_id: str) -> list[dict[str, Any]]:
        db = await get_db()
        rows = []
        async for row in db[USER_CARTS].find({"user_id": user_id}):
            rows.append({"product_id": row["product_id"], "quantity": int(row.get("quantity", 1))})
        return rows

    async def upsert(self, user_id: str, product_id: str, quantity: int) -> None:
        db = await get_db()
        await db[USER_CARTS].update_one(
            {"user_id": user_id, "product_id": product_id},
            {"$set": {"quantity": quantity, "updated_at": utcnow()}},
            upsert=True,
        )

    async def delete(self, user_id: str, product_id: str) -> None:
        db = await get_db()
        await db[USER_CARTS].delete_one({"user_id": user_id, "product_id": product_id})

    async def clear(self, user_id: str) -> None:
        db = await get_db()
        await db[USER_CARTS].delete_many({"user_id": user_id})
