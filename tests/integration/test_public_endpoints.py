import pytest


@pytest.mark.asyncio
async def test_root_endpoint_basic_response(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    body = resp.json()
    assert body.get("message") == "Storefront API"
    assert body.get("status") == "operational"


@pytest.mark.asyncio
async def test_product_listing(client, plain_product, cheap_product, shirt):
    resp = await client.get("/api/products", params={"sort": "price-low", "limit": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert body["pages"] == 2
    assert [p["id"] for p in body["products"]] == [shirt.id, cheap_product.id]


@pytest.mark.asyncio
async def test_product_listing_price_filter_aliases(client, plain_product, cheap_product):
    resp = await client.get("/api/products", params={"minPrice": 75})
    assert [p["id"] for p in resp.json()["products"]] == [plain_product.id]


@pytest.mark.asyncio
async def test_product_listing_rejects_unknown_sort(client):
    resp = await client.get("/api/products", params={"sort": "cheapest"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_product_detail_includes_synced_variants(client, shirt):
    resp = await client.get(f"/api/products/{shirt.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["price"] == 22.0
    assert body["stock"] == 9
    assert [v["sku"] for v in body["variants"]] == ["SHIRT-S-RED", "SHIRT-M-RED", "SHIRT-M-BLUE"]
    assert body["reviews"] == []


@pytest.mark.asyncio
async def test_missing_product_is_404(client):
    resp = await client.get("/api/products/999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_gallery_for_color(client, shirt):
    resp = await client.get(f"/api/products/{shirt.id}/images", params={"color": "Blue"})
    assert [img["url"] for img in resp.json()] == ["/img/shirt-blue.jpg", "/img/shirt-label.jpg"]


@pytest.mark.asyncio
async def test_similar_products(client, plain_product, cheap_product):
    resp = await client.get(f"/api/products/{plain_product.id}/similar")
    assert resp.status_code == 200
    assert resp.json() == []
