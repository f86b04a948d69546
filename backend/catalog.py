from __future__ import annotations
import logging
import time
import uuid
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from database import create_document, get_db, get_documents, to_object_id, utcnow, with_str_id
from notifications import NotificationCenter
from schemas import Product, ProductIn, ProductUpdate, Review, ReviewIn
from storage import ImageBucket, StorageError, is_data_url

logger = logging.getLogger(__name__)

CATEGORIES: list[str] = ["Smartphones", "Laptops", "Audio", "TVs", "Acessórios", "Cuidados Pessoais"]

PRODUCTS = "products"


# Row mapping

def product_from_row(row: dict[str, Any]) -> Product:
    """Map a stored row to a Product. Older rows carry a single `image_url`."""
    image_urls = [u for u in (row.get("image_urls") or []) if u]
    if not image_urls and row.get("image_url"):
        image_urls = [row["image_url"]]
    stock = row.get("stock_quantity", row.get("stock", 0)) or 0
    return Product(
        id=str(row.get("id") or row.get("_id")),
        name=row.get("name") or "",
        description=row.get("description") or "",
        price=float(row.get("price") or 0),
        category=row.get("category") or "",
        stock=max(0, int(stock)),
        image_urls=image_urls,
        reviews=[Review(**r) for r in row.get("reviews") or []],
    )


def product_to_row(data: dict[str, Any]) -> dict[str, Any]:
    row = {k: v for k, v in data.items() if k not in ("id", "stock", "reviews")}
    if "stock" in data:
        row["stock_quantity"] = data["stock"]
    return row


class ProductGateway:
    """CRUD on the hosted products collection."""

    def __init__(self, bucket: Optional[ImageBucket] = None):
        self.bucket = bucket

    async def _store_images(self, urls: list[str]) -> list[str]:
        stored = []
        for url in urls:
            url = url.strip()
            if not url:
                continue
            if is_data_url(url):
                if self.bucket is None:
                    raise StorageError("No image bucket configured")
                url = await run_in_threadpool(self.bucket.upload, url)
            stored.append(url)
        return stored

    async def list(self) -> list[Product]:
        rows = await get_documents(PRODUCTS, sort=[("created_at", -1)])
        return [product_from_row(r) for r in rows]

    async def get(self, product_id: str) -> Optional[Product]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        db = await get_db()
        row = await db[PRODUCTS].find_one({"_id": oid})
        return product_from_row(with_str_id(row)) if row else None

    async def insert(self, data: ProductIn) -> Product:
        payload = data.model_dump()
        payload["image_urls"] = await self._store_images(payload["image_urls"])
        row = product_to_row(payload)
        row["reviews"] = []
        saved = await create_document(PRODUCTS, row)
        return product_from_row(saved)

    async def update(self, product_id: str, data: ProductUpdate) -> Optional[Product]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        update: dict[str, Any] = {"$set": {"updated_at": utcnow()}}
        if "image_urls" in changes:
            changes["image_urls"] = await self._store_images(changes["image_urls"])
            # Normalize legacy single-image rows once they are edited.
            update["$unset"] = {"image_url": ""}
        update["$set"].update(product_to_row(changes))

        db = await get_db()
        res = await db[PRODUCTS].update_one({"_id": oid}, update)
        if res.matched_count == 0:
            return None
        row = await db[PRODUCTS].find_one({"_id": oid})
        return product_from_row(with_str_id(row))

    async def delete(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        db = await get_db()
        res = await db[PRODUCTS].delete_one({"_id": oid})
        return res.deleted_count > 0

    async def add_review(self, product_id: str, data: ReviewIn) -> Optional[Review]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        review = Review(id=uuid.uuid4().hex, date=utcnow(), **data.model_dump())
        db = await get_db()
        res = await db[PRODUCTS].update_one({"_id": oid}, {"$push": {"reviews": review.model_dump()}})
        return review if res.matched_count else None


def average_rating(product: Product) -> float:
    if not product.reviews:
        return 0.0
    return sum(r.rating for r in product.reviews) / len(product.reviews)


class ProductCatalog:
    """
    The visitor's copy of the catalog.

    Loaded once from the gateway, then patched in place after each successful
    write instead of being fetched again. Failures are logged, kept in
    `error` and shown as an error notification; the method then returns
    None (or False for deletes).
    """

    def __init__(
        self,
        gateway: ProductGateway,
        notifications: NotificationCenter,
        max_age: Optional[float] = None,
    ):
        self.gateway = gateway
        self.notifications = notifications
        self.max_age = max_age
        self.products: list[Product] = []
        self.is_loading = False
        self.loaded = False
        self.loaded_at: Optional[float] = None
        self.error: Optional[str] = None

    def _failed(self, action: str, message: str, e: Exception) -> None:
        logger.exception("Failed to %s", action)
        self.error = str(e) or message
        self.notifications.show(message, "error")

    async def fetch_products(self) -> list[Product]:
        self.is_loading = True
        self.error = None
        try:
            self.products = await self.gateway.list()
            self.loaded = True
            self.loaded_at = time.monotonic()
        except Exception as e:
            self._failed("fetch products", "Erro ao carregar produtos.", e)
        finally:
            self.is_loading = False
        return self.products

    @property
    def stale(self) -> bool:
        if self.max_age is None or self.loaded_at is None:
            return False
        return time.monotonic() - self.loaded_at > self.max_age

    async def ensure_loaded(self) -> list[Product]:
        if not self.loaded or self.stale:
            await self.fetch_products()
        return self.products

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Cached product, falling back to a direct read for rows added since the last load."""
        await self.ensure_loaded()
        product = self.find(product_id)
        if product is not None:
            return product
        self.error = None
        try:
            product = await self.gateway.get(product_id)
        except Exception as e:
            self._failed("load product", "Erro ao carregar produtos.", e)
            return None
        if product is not None:
            self.products.insert(0, product)
        return product

    def find(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def filter(self, category: Optional[str] = None, search: Optional[str] = None) -> list[Product]:
        prods = self.products
        if category:
            prods = [p for p in prods if p.category.lower() == category.lower()]
        if search:
            term = search.lower()
            prods = [p for p in prods if term in p.name.lower()]
        return prods

    def related(self, product: Product, limit: int = 4) -> list[Product]:
        return [p for p in self.products if p.category == product.category and p.id != product.id][:limit]

    async def add_product(self, data: ProductIn) -> Optional[Product]:
        self.is_loading = True
        self.error = None
        try:
            product = await self.gateway.insert(data)
        except StorageError as e:
            self._failed("upload product image", "Falha ao carregar a imagem do produto.", e)
            return None
        except Exception as e:
            self._failed("add product", "Falha ao criar produto.", e)
            return None
        finally:
            self.is_loading = False
        self.products.insert(0, product)
        return product

    async def update_product(self, product_id: str, data: ProductUpdate) -> Optional[Product]:
        self.is_loading = True
        self.error = None
        try:
            product = await self.gateway.update(product_id, data)
        except StorageError as e:
            self._failed("upload product image", "Falha ao carregar a imagem do produto.", e)
            return None
        except Exception as e:
            self._failed("update product", "Falha ao atualizar produto.", e)
            return None
        finally:
            self.is_loading = False
        if product is None:
            self.notifications.show("Produto não encontrado.", "error")
            return None
        self.products = [product if p.id == product_id else p for p in self.products]
        return product

    async def delete_product(self, product_id: str) -> bool:
        self.is_loading = True
        self.error = None
        try:
            deleted = await self.gateway.delete(product_id)
        except Exception as e:
            self._failed("delete product", "Falha ao eliminar produto.", e)
            return False
        finally:
            self.is_loading = False
        if not deleted:
            self.notifications.show("Produto não encontrado.", "error")
            return False
        self.products = [p for p in self.products if p.id != product_id]
        return True

    async def add_review(self, product_id: str, data: ReviewIn) -> Optional[Review]:
        self.error = None
        try:
            review = await self.gateway.add_review(product_id, data)
        except Exception as e:
            self._failed("add review", "Falha ao enviar avaliação.", e)
            return None
        if review is None:
            self.notifications.show("Produto não encontrado.", "error")
            return None
        self.products = [
            p.model_copy(update={"reviews": [*p.reviews, review]}) if p.id == product_id else p
            for p in self.products
        ]
        self.notifications.show("Avaliação enviada com sucesso!", "success")
        return review
