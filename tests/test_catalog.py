import base64
import threading
from datetime import datetime, timedelta, timezone

import pytest

from catalog import ProductCatalog, ProductGateway, average_rating, product_from_row
from schemas import ProductIn, ProductUpdate, ReviewIn
from storage import ImageBucket

PNG = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()


def product_in(**overrides):
    data = {
        "name": "Webcam HD Pro",
        "description": "Vídeo chamadas nítidas.",
        "price": 25000,
        "category": "Acessórios",
        "stock": 20,
        "image_urls": ["https://picsum.photos/seed/webcam1/600/500"],
    }
    data.update(overrides)
    return ProductIn(**data)


def test_single_image_row_becomes_one_element_list():
    product = product_from_row({"id": "1", "name": "TV", "price": 10, "category": "TVs", "stock_quantity": 3, "image_url": "https://x/tv.jpg"})
    assert product.image_urls == ["https://x/tv.jpg"]
    assert product.stock == 3


def test_row_without_images_has_empty_list():
    product = product_from_row({"id": "1", "name": "TV", "price": 10, "category": "TVs"})
    assert product.image_urls == []
    assert product.stock == 0
    assert product.reviews == []


def test_image_list_wins_over_single_url():
    row = {"id": "1", "name": "TV", "price": 10, "category": "TVs", "image_urls": ["a", "b"], "image_url": "c"}
    assert product_from_row(row).image_urls == ["a", "b"]


async def test_list_is_newest_first(db):
    now = datetime.now(timezone.utc)
    await db.products.insert_many([
        {"name": "Velho", "price": 1, "category": "Audio", "stock_quantity": 1, "created_at": now - timedelta(days=1)},
        {"name": "Novo", "price": 1, "category": "Audio", "stock_quantity": 1, "created_at": now},
    ])
    names = [p.name for p in await ProductGateway().list()]
    assert names == ["Novo", "Velho"]


async def test_insert_and_get_round_trip(db):
    gateway = ProductGateway()
    created = await gateway.insert(product_in())

    assert created.id
    assert created.stock == 20
    stored = await db.products.find_one({"name": "Webcam HD Pro"})
    assert stored["stock_quantity"] == 20
    assert await gateway.get(created.id) == created


async def test_insert_uploads_inline_images(db, tmp_path):
    bucket = ImageBucket(tmp_path, "http://cdn.test")
    created = await ProductGateway(bucket).insert(product_in(image_urls=[PNG, "https://x/y.jpg"]))

    uploaded, external = created.image_urls
    assert uploaded.startswith("http://cdn.test/media/product-images/")
    assert uploaded.endswith(".png")
    assert external == "https://x/y.jpg"
    assert len(list((tmp_path / "product-images").iterdir())) == 1


async def test_update_normalizes_legacy_image(db):
    res = await db.products.insert_one({"name": "TV", "price": 10, "category": "TVs", "stock_quantity": 2, "image_url": "old.jpg"})
    pid = str(res.inserted_id)

    updated = await ProductGateway().update(pid, ProductUpdate(price=12, image_urls=["new.jpg"]))

    assert updated.price == 12
    assert updated.image_urls == ["new.jpg"]
    assert "image_url" not in await db.products.find_one({"_id": res.inserted_id})


async def test_update_and_delete_unknown_ids(db):
    gateway = ProductGateway()
    assert await gateway.update("not-an-id", ProductUpdate(price=1)) is None
    assert await gateway.update("65a000000000000000000000", ProductUpdate(price=1)) is None
    assert await gateway.delete("65a000000000000000000000") is False


# Catalog cache

async def test_fetch_then_patch_without_refetch(catalog, db):
    await catalog.fetch_products()
    assert catalog.loaded and catalog.products == []

    created = await catalog.add_product(product_in())
    assert catalog.products == [created]

    updated = await catalog.update_product(created.id, ProductUpdate(stock=7))
    assert catalog.find(created.id).stock == 7 == updated.stock

    assert await catalog.delete_product(created.id)
    assert catalog.products == []
    assert catalog.error is None


async def test_failure_is_tracked_and_notified(catalog, notifications, monkeypatch):
    async def offline(*args):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(catalog.gateway, "insert", offline)
    assert await catalog.add_product(product_in()) is None

    assert catalog.error == "database unreachable"
    assert not catalog.is_loading
    assert notifications.current.type == "error"
    assert notifications.current.message == "Falha ao criar produto."


async def test_inline_image_without_bucket_fails(catalog, notifications, db):
    assert await catalog.add_product(product_in(image_urls=[PNG])) is None
    assert notifications.current.message == "Falha ao carregar a imagem do produto."
    assert await db.products.count_documents({}) == 0


async def test_update_missing_product_notifies(catalog, notifications, db):
    assert await catalog.update_product("65a000000000000000000000", ProductUpdate(stock=1)) is None
    assert catalog.error is None
    assert notifications.current.message == "Produto não encontrado."


async def test_reviews_are_appended(catalog, notifications, db):
    created = await catalog.add_product(product_in())
    await catalog.add_review(created.id, ReviewIn(author="Ana P.", rating=4, comment="Muito bom"))
    await catalog.add_review(created.id, ReviewIn(author="Carlos M.", rating=5, comment="Recomendo"))

    product = catalog.find(created.id)
    assert [r.author for r in product.reviews] == ["Ana P.", "Carlos M."]
    assert average_rating(product) == 4.5
    assert notifications.current.message == "Avaliação enviada com sucesso!"

    stored = await ProductGateway().get(created.id)
    assert len(stored.reviews) == 2


@pytest.fixture
def shelf(catalog):
    from conftest import make_product
    catalog.products = [
        make_product("1", name="Smartphone X Pro", category="Smartphones"),
        make_product("2", name="Tablet Avançado", category="Smartphones"),
        make_product("3", name="Coluna Bluetooth", category="Audio"),
    ]
    catalog.loaded = True
    return catalog


def test_filter_by_category_and_search(shelf):
    assert [p.id for p in shelf.filter(category="smartphones")] == ["1", "2"]
    assert [p.id for p in shelf.filter(search="TABLET")] == ["2"]
    assert [p.id for p in shelf.filter(category="Audio", search="smart")] == []
    assert len(shelf.filter()) == 3


def test_related_excludes_product_itself(shelf):
    assert [p.id for p in shelf.related(shelf.find("1"))] == ["2"]


async def test_get_product_reads_rows_added_since_load(catalog, db):
    await catalog.fetch_products()
    res = await db.products.insert_one({"name": "Novo", "price": 5, "category": "Audio", "stock_quantity": 2})
    pid = str(res.inserted_id)
    assert catalog.find(pid) is None

    product = await catalog.get_product(pid)

    assert product.name == "Novo"
    assert catalog.find(pid) == product
    assert await catalog.get_product("65a000000000000000000000") is None


async def test_stale_catalog_is_reloaded(db, notifications):
    catalog = ProductCatalog(ProductGateway(), notifications, max_age=60)
    await catalog.ensure_loaded()
    await db.products.insert_one({"name": "Novo", "price": 5, "category": "Audio", "stock_quantity": 2})

    assert await catalog.ensure_loaded() == []
    catalog.loaded_at -= 61
    assert [p.name for p in await catalog.ensure_loaded()] == ["Novo"]


async def test_image_upload_runs_off_the_event_loop(db, tmp_path, monkeypatch):
    bucket = ImageBucket(tmp_path, "http://cdn.test")
    upload = bucket.upload
    threads = []

    def recording_upload(data_url):
        threads.append(threading.current_thread())
        return upload(data_url)

    monkeypatch.setattr(bucket, "upload", recording_upload)
    await ProductGateway(bucket).insert(product_in(image_urls=[PNG]))

    assert len(threads) == 1
    assert threads[0] is not threading.current_thread()
