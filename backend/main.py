from __future__ import annotations
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, RedirectResponse
from pydantic import BaseModel, ValidationError

from catalog import CATEGORIES, PRODUCTS, average_rating
from checkout import (
    PAYMENT_METHODS,
    PROVINCES,
    EmptyCart,
    InvalidCheckout,
    OrderFailed,
    SubmissionInProgress,
    payment_method_name,
)
from database import close_db, get_db, get_settings, utcnow
from pages import resolve
from schemas import (
    CartLineIn,
    CartOut,
    CheckoutRequest,
    Credentials,
    Notification,
    Order,
    PaymentMethod,
    Product,
    ProductIn,
    ProductUpdate,
    QuantityIn,
    Review,
    ReviewIn,
    RouteMatch,
    User,
)
from sessions import SESSION_COOKIE, SessionRegistry, StorefrontSession
from storage import ImageBucket

logger = logging.getLogger("angotech")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        settings = get_settings()
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors())
        raise RuntimeError(f"Missing required configuration: {missing}") from e

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    bucket = ImageBucket(settings.MEDIA_ROOT, settings.PUBLIC_BASE_URL)
    app.state.bucket = bucket
    app.state.sessions = SessionRegistry(settings, bucket)
    logger.info("AngoTech API started")
    yield
    await app.state.sessions.flush()
    close_db()


app = FastAPI(title="AngoTech API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies

def require_api_key(apikey: Optional[str] = Header(None)):
    if apikey != get_settings().API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")


async def storefront(request: Request, response: Response) -> StorefrontSession:
    registry: SessionRegistry = request.app.state.sessions
    session = registry.get(request.cookies.get(SESSION_COOKIE))
    if session is None:
        session = registry.create()
        response.set_cookie(SESSION_COOKIE, session.id, httponly=True, samesite="lax")
    return session


async def require_user(session: StorefrontSession = Depends(storefront)) -> User:
    if session.auth.user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return session.auth.user


async def load_product(session: StorefrontSession, product_id: str) -> Product:
    product = await session.catalog.get_product(product_id)
    if product is None:
        if session.catalog.error:
            raise HTTPException(status_code=502, detail=session.catalog.error)
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def cart_out(session: StorefrontSession) -> CartOut:
    cart = session.cart
    return CartOut(
        items=cart.items,
        total_price=cart.get_total_price(),
        item_count=cart.get_item_count(),
        authenticated=cart.authenticated,
        syncing=cart.merging,
    )


# Demo catalog

def _review(author: str, rating: int, comment: str, days_ago: int) -> dict:
    return {
        "id": uuid.uuid4().hex,
        "author": author,
        "rating": rating,
        "comment": comment,
        "date": utcnow() - timedelta(days=days_ago),
    }


def seed_products() -> list[dict]:
    happy = ("Cliente Satisfeito", 5, "Excelente produto, superou as minhas expectativas!", 5)
    slow = ("Ana P.", 4, "Muito bom, mas a entrega demorou um pouco.", 2)
    return [
        {"name": "Smartphone X Pro", "description": "O mais recente smartphone com câmara tripla e ecrã OLED.", "price": 250000, "category": "Smartphones", "stock_quantity": 15, "image_urls": ["https://picsum.photos/seed/phone1/600/500"], "reviews": [_review(*happy), _review("Carlos M.", 5, "Câmera incrível e design moderno. Recomendo!", 0)]},
        {"name": "Laptop Gamer Z", "description": "Performance extrema para jogos e trabalho pesado. Placa gráfica dedicada.", "price": 750000, "category": "Laptops", "stock_quantity": 8, "image_urls": ["https://picsum.photos/seed/laptop1/600/500"], "reviews": [_review(*slow)]},
        {"name": "Auriculares BT MaxSound", "description": "Som imersivo com cancelamento de ruído e bateria de longa duração.", "price": 45000, "category": "Audio", "stock_quantity": 30, "image_urls": ["https://picsum.photos/seed/headphones1/600/500"], "reviews": [_review("DJ Kapiro", 5, "Qualidade de som profissional!", 10)]},
        {"name": 'Smart TV 4K 55"', "description": "Ecrã gigante com resolução 4K Ultra HD e funcionalidades Smart.", "price": 450000, "category": "TVs", "stock_quantity": 12, "image_urls": ["https://picsum.photos/seed/tv1/600/500"], "reviews": []},
        {"name": "Carregador Rápido USB-C", "description": "Carregue os seus dispositivos rapidamente com este carregador de 65W.", "price": 15000, "category": "Acessórios", "stock_quantity": 50, "image_urls": ["https://picsum.photos/seed/charger1/600/500"], "reviews": [_review(*happy)]},
        {"name": "Teclado Mecânico RGB", "description": "Experiência de digitação superior com iluminação RGB personalizável.", "price": 35000, "category": "Acessórios", "stock_quantity": 25, "image_urls": ["https://picsum.photos/seed/keyboard1/600/500"], "reviews": []},
        {"name": "Webcam HD Pro", "description": "Vídeo chamadas nítidas com resolução Full HD e microfone integrado.", "price": 25000, "category": "Acessórios", "stock_quantity": 20, "image_urls": ["https://picsum.photos/seed/webcam1/600/500"], "reviews": []},
        {"name": "Powerbank 20000mAh", "description": "Nunca fique sem bateria com esta powerbank de alta capacidade.", "price": 20000, "category": "Acessórios", "stock_quantity": 40, "image_urls": ["https://picsum.photos/seed/powerbank1/600/500"], "reviews": []},
        {"name": "Rato Sem Fio Ergonómico", "description": "Conforto e precisão para longas horas de uso.", "price": 18000, "category": "Acessórios", "stock_quantity": 35, "image_urls": ["https://picsum.photos/seed/mouse1/600/500"], "reviews": []},
        {"name": 'Tablet Avançado 10"', "description": "Ecrã vibrante e performance rápida para entretenimento e produtividade.", "price": 180000, "category": "Smartphones", "stock_quantity": 10, "image_urls": ["https://picsum.photos/seed/tablet1/600/500"], "reviews": [_review(*slow)]},
        {"name": "Coluna Bluetooth Portátil", "description": "Leve a sua música para qualquer lugar com som potente.", "price": 30000, "category": "Audio", "stock_quantity": 22, "image_urls": ["https://picsum.photos/seed/speaker1/600/500"], "reviews": []},
        {"name": 'Monitor Curvo 27"', "description": "Imersão total com este monitor curvo para trabalho ou jogos.", "price": 220000, "category": "TVs", "stock_quantity": 9, "image_urls": ["https://picsum.photos/seed/monitor1/600/500"], "reviews": []},
    ]


# Health

@app.get("/")
async def root():
    return {"message": "AngoTech Backend Running"}


@app.get("/test")
async def test():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = await get_db()
        response["database_name"] = db.name
        response["collections"] = (await db.list_collection_names())[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


class SeedResponse(BaseModel):
    inserted: int


@app.post("/seed", response_model=SeedResponse, dependencies=[Depends(require_api_key)])
async def seed():
    db = await get_db()
    if await db[PRODUCTS].count_documents({}) > 0:
        return SeedResponse(inserted=0)
    now = utcnow()
    docs = seed_products()
    # Newest first in listings keeps the demo order.
    for i, doc in enumerate(docs):
        doc["created_at"] = doc["updated_at"] = now - timedelta(seconds=i)
    await db[PRODUCTS].insert_many(docs)
    logger.info("Seeded %d products", len(docs))
    return SeedResponse(inserted=len(docs))


@app.get("/media/{bucket}/{filename}")
async def media(bucket: str, filename: str, request: Request):
    image_bucket: ImageBucket = request.app.state.bucket
    path = image_bucket.path_for(filename) if bucket == image_bucket.name else None
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


api = APIRouter(prefix="/api", dependencies=[Depends(require_api_key)])


# Catalog

@api.get("/categories", response_model=list[str])
async def list_categories():
    return CATEGORIES


@api.get("/payment-methods", response_model=list[PaymentMethod])
async def list_payment_methods():
    return PAYMENT_METHODS


@api.get("/provinces", response_model=list[str])
async def list_provinces():
    return PROVINCES


@api.get("/products", response_model=list[Product])
async def list_products(
    category: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    refresh: bool = Query(False),
    session: StorefrontSession = Depends(storefront),
):
    if refresh:
        await session.catalog.fetch_products()
    else:
        await session.catalog.ensure_loaded()
    if session.catalog.error and not session.catalog.products:
        raise HTTPException(status_code=502, detail="Could not load products")
    return session.catalog.filter(category=category, search=q)


class ProductDetail(BaseModel):
    product: Product
    related: list[Product]
    average_rating: float
    review_count: int


@api.get("/products/{product_id}", response_model=ProductDetail)
async def get_product(product_id: str, session: StorefrontSession = Depends(storefront)):
    product = await load_product(session, product_id)
    return ProductDetail(
        product=product,
        related=session.catalog.related(product),
        average_rating=average_rating(product),
        review_count=len(product.reviews),
    )


@api.post("/products", response_model=Product, status_code=201)
async def create_product(
    payload: ProductIn,
    session: StorefrontSession = Depends(storefront),
    user: User = Depends(require_user),
):
    await session.catalog.ensure_loaded()
    product = await session.catalog.add_product(payload)
    if product is None:
        raise HTTPException(status_code=502, detail=session.catalog.error or "Could not create product")
    logger.info("Product %s created by %s", product.id, user.id)
    return product


@api.patch("/products/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    payload: ProductUpdate,
    session: StorefrontSession = Depends(storefront),
    user: User = Depends(require_user),
):
    if not payload.model_dump(exclude_unset=True, exclude_none=True):
        raise HTTPException(status_code=400, detail="No fields to update")
    await session.catalog.ensure_loaded()
    product = await session.catalog.update_product(product_id, payload)
    if product is None:
        if session.catalog.error:
            raise HTTPException(status_code=502, detail=session.catalog.error)
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@api.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    session: StorefrontSession = Depends(storefront),
    user: User = Depends(require_user),
):
    await session.catalog.ensure_loaded()
    if not await session.catalog.delete_product(product_id):
        if session.catalog.error:
            raise HTTPException(status_code=502, detail=session.catalog.error)
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deleted": True}


@api.post("/products/{product_id}/reviews", response_model=Review, status_code=201)
async def add_review(product_id: str, payload: ReviewIn, session: StorefrontSession = Depends(storefront)):
    await session.catalog.ensure_loaded()
    review = await session.catalog.add_review(product_id, payload)
    if review is None:
        if session.catalog.error:
            raise HTTPException(status_code=502, detail=session.catalog.error)
        raise HTTPException(status_code=404, detail="Product not found")
    return review


# Cart

@api.get("/cart", response_model=CartOut)
async def get_cart(session: StorefrontSession = Depends(storefront)):
    return cart_out(session)


@api.post("/cart/items", response_model=CartOut)
async def add_to_cart(payload: CartLineIn, session: StorefrontSession = Depends(storefront)):
    product = await load_product(session, payload.product_id)
    session.cart.add_to_cart(product, payload.quantity)
    return cart_out(session)


@api.patch("/cart/items/{product_id}", response_model=CartOut)
async def update_cart_item(product_id: str, payload: QuantityIn, session: StorefrontSession = Depends(storefront)):
    session.cart.update_quantity(product_id, payload.quantity)
    return cart_out(session)


@api.delete("/cart/items/{product_id}", response_model=CartOut)
async def remove_cart_item(product_id: str, session: StorefrontSession = Depends(storefront)):
    session.cart.remove_from_cart(product_id)
    return cart_out(session)


@api.delete("/cart", response_model=CartOut)
async def clear_cart(session: StorefrontSession = Depends(storefront)):
    session.cart.clear_cart()
    return cart_out(session)


# Auth

class SessionOut(BaseModel):
    authenticated: bool
    user: Optional[User] = None


@api.get("/auth/session", response_model=SessionOut)
async def get_session(session: StorefrontSession = Depends(storefront)):
    return SessionOut(authenticated=session.auth.is_authenticated, user=session.auth.user)


@api.post("/auth/signup", response_model=User, status_code=201)
async def sign_up(payload: Credentials, session: StorefrontSession = Depends(storefront)):
    user = await session.auth.sign_up(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=400, detail="Could not create account")
    return user


@api.post("/auth/login", response_model=SessionOut)
async def login(payload: Credentials, session: StorefrontSession = Depends(storefront)):
    user = await session.auth.login(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return SessionOut(authenticated=True, user=user)


@api.post("/auth/logout", response_model=SessionOut)
async def logout(session: StorefrontSession = Depends(storefront)):
    await session.auth.logout()
    return SessionOut(authenticated=False)


@api.get("/auth/oauth/{provider}")
async def oauth(provider: str, redirect_to: str = Query("/"), session: StorefrontSession = Depends(storefront)):
    url = session.auth.sign_in_with_oauth(provider, redirect_to)
    if url is None:
        raise HTTPException(status_code=400, detail=f"OAuth sign in with {provider} is not available")
    return RedirectResponse(url)


# Checkout and orders

@api.post("/checkout", response_model=Order, status_code=201)
async def checkout(payload: CheckoutRequest, session: StorefrontSession = Depends(storefront)):
    try:
        return await session.checkout.place_order(payload.shipping_address, payload.payment_method)
    except EmptyCart:
        raise HTTPException(status_code=400, detail={"message": "Cart is empty", "redirect": "/cart"})
    except SubmissionInProgress:
        raise HTTPException(status_code=409, detail="Order already being processed")
    except InvalidCheckout as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})
    except OrderFailed:
        raise HTTPException(status_code=502, detail="Could not place order")


@api.get("/orders", response_model=list[Order])
async def list_orders(session: StorefrontSession = Depends(storefront)):
    if session.auth.user is None:
        session.notifications.show("Por favor, faça login para ver os seus pedidos.", "info")
        raise HTTPException(status_code=401, detail={"message": "Authentication required", "redirect": "/login", "from": "/orders"})
    try:
        return await session.orders.history(session.auth.user.id)
    except Exception:
        logger.exception("Error loading orders")
        session.notifications.show("Erro ao carregar pedidos.", "error")
        raise HTTPException(status_code=502, detail="Could not load orders")


class Link(BaseModel):
    label: str
    to: str


class Confirmation(BaseModel):
    available: bool
    order: Optional[Order] = None
    payment_method_name: Optional[str] = None
    note: Optional[str] = None
    links: list[Link]


def confirmation_for(order: Optional[Order]) -> Confirmation:
    if order is None:
        return Confirmation(
            available=False,
            links=[Link(label="Ver Meus Pedidos", to="/orders"), Link(label="Voltar à Página Inicial", to="/")],
        )
    note = None
    if order.payment_method == "bank_transfer":
        note = "Para pagamentos por Transferência Bancária, os detalhes da conta serão enviados por email."
    return Confirmation(
        available=True,
        order=order,
        payment_method_name=payment_method_name(order.payment_method),
        note=note,
        links=[Link(label="Continuar a Comprar", to="/"), Link(label="Ver Meus Pedidos", to="/orders")],
    )


@api.get("/orders/confirmation", response_model=Confirmation)
async def order_confirmation(session: StorefrontSession = Depends(storefront)):
    return confirmation_for(session.checkout.last_order)


@api.get("/orders/{order_id}", response_model=Confirmation)
async def get_order(order_id: str, session: StorefrontSession = Depends(storefront), user: User = Depends(require_user)):
    try:
        order = await session.orders.get(order_id, user.id)
    except Exception:
        logger.exception("Error loading order %s", order_id)
        session.notifications.show("Erro ao carregar pedidos.", "error")
        raise HTTPException(status_code=502, detail="Could not load order")
    return confirmation_for(order)


# Notifications and pages

@api.get("/notification", response_model=Optional[Notification])
async def get_notification(session: StorefrontSession = Depends(storefront)):
    return session.notifications.current


@api.delete("/notification", response_model=Optional[Notification])
async def dismiss_notification(session: StorefrontSession = Depends(storefront)):
    session.notifications.dismiss()
    return session.notifications.current


@api.get("/pages/resolve", response_model=RouteMatch)
async def resolve_page(path: str = Query("/"), session: StorefrontSession = Depends(storefront)):
    return resolve(path, session.auth.is_authenticated)


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
