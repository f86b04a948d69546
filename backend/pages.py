from __future__ import annotations
from typing import Optional
from urllib.parse import unquote

from schemas import RouteMatch

# Hash routes of the storefront, in match order.
ROUTES: list[tuple[str, str]] = [
    ("/", "products"),
    ("/products", "products"),
    ("/products/:category", "products"),
    ("/product/:id", "product_detail"),
    ("/cart", "cart"),
    ("/login", "login"),
    ("/checkout", "checkout"),
    ("/confirmation", "confirmation"),
    ("/orders", "orders"),
    ("/admin/products", "admin_products"),
    ("/profile", "profile"),
]

PROTECTED = {"/admin/products"}


def normalize(path: str) -> str:
    path = path.lstrip("#").split("?", 1)[0].strip()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def match(pattern: str, path: str) -> Optional[dict[str, str]]:
    want = pattern.strip("/").split("/")
    got = path.strip("/").split("/")
    if len(want) != len(got):
        return None
    params = {}
    for w, g in zip(want, got):
        if w.startswith(":"):
            if not g:
                return None
            params[w[1:]] = unquote(g)
        elif w != g:
            return None
    return params


def resolve(path: str, authenticated: bool) -> RouteMatch:
    path = normalize(path)
    for pattern, page in ROUTES:
        params = match(pattern, path)
        if params is None:
            continue
        if pattern in PROTECTED and not authenticated:
            return RouteMatch(page="login", redirect="/login", state={"from": path})
        return RouteMatch(page=page, params=params)
    return RouteMatch(page="products", redirect="/")
