PRODUCT = {
    "name": "ThinkPad X1 Carbon",
    "description": "Business laptop, refurbished with new battery",
    "price": 649.0,
    "originalPrice": 1299.0,
    "category": "laptops",
    "brand": "Lenovo",
    "condition": "like_new",
    "stockQuantity": 4,
    "images": ["https://img.example.com/x1-front.jpg", "https://img.example.com/x1-back.jpg"],
    "specifications": {"ram": "16GB", "ssd": 512, "touch": False},
    "tags": ["laptop", "business", "laptop", " "],
}


def test_seller_creates_unapproved_product(client, seller):
    response = client.post("/api/products", json=PRODUCT, headers=seller.headers)
    assert response.status_code == 201
    body = response.json()
    assert body["approved"] is False
    assert body["sellerId"] == seller.id
    assert body["stockQuantity"] == 4
    assert body["images"] == PRODUCT["images"]
    assert body["specifications"] == {"ram": "16GB", "ssd": 512, "touch": False}
    assert body["tags"] == ["laptop", "business"]


def test_buyer_cannot_create_product(client, buyer):
    response = client.post("/api/products", json=PRODUCT, headers=buyer.headers)
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_product_requires_positive_price_and_known_condition(client, seller):
    bad_price = client.post("/api/products", json={**PRODUCT, "price": 0}, headers=seller.headers)
    bad_condition = client.post("/api/products", json={**PRODUCT, "condition": "broken"}, headers=seller.headers)
    assert bad_price.status_code == 400
    assert bad_condition.status_code == 400


def test_unapproved_product_is_hidden_until_admin_approves(client, seller, admin):
    product_id = client.post("/api/products", json=PRODUCT, headers=seller.headers).json()["id"]

    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert client.get("/api/products").json()["totalProducts"] == 0

    approved = client.patch(f"/api/products/{product_id}/approve", headers=admin.headers)
    assert approved.status_code == 200
    assert approved.json()["approved"] is True

    assert client.get(f"/api/products/{product_id}").status_code == 200
    assert client.get("/api/products").json()["totalProducts"] == 1


def test_only_admin_can_approve(client, seller):
    product_id = client.post("/api/products", json=PRODUCT, headers=seller.headers).json()["id"]
    response = client.patch(f"/api/products/{product_id}/approve", headers=seller.headers)
    assert response.status_code == 403


def test_public_listing_returns_only_approved_products(client, seller, make_product):
    visible = {make_product(seller, name=f"Visible {i}") for i in range(3)}
    for i in range(2):
        make_product(seller, name=f"Hidden {i}", approved=False)

    body = client.get("/api/products", params={"limit": 100}).json()
    assert {p["id"] for p in body["products"]} == visible
    assert all(p["approved"] for p in body["products"])
    assert body["totalProducts"] == 3


def test_admin_listing_includes_unapproved_products(client, seller, admin, make_product):
    live = make_product(seller, name="Live")
    queued = make_product(seller, name="Queued", approved=False)

    everything = client.get("/api/products/admin", headers=admin.headers).json()
    assert {p["id"] for p in everything["products"]} == {live, queued}
    assert everything["totalProducts"] == 2

    pending = client.get("/api/products/admin", params={"approved": "false"}, headers=admin.headers).json()
    assert [p["id"] for p in pending["products"]] == [queued]

    approved = client.get(
        "/api/products/admin", params={"approved": "true", "searchTerm": "live"}, headers=admin.headers
    ).json()
    assert [p["id"] for p in approved["products"]] == [live]

    assert client.get("/api/products/admin", headers=seller.headers).status_code == 403
    assert client.get("/api/products/admin").status_code == 401


def test_listing_filters_and_pagination(client, seller, make_product):
    make_product(seller, name="Pixel 7", price=300, category="phones", tags=["android"])
    make_product(seller, name="iPhone 13", price=450, category="phones", brand="Apple")
    make_product(seller, name="MacBook Air", price=800, category="laptops", brand="Apple")
    make_product(seller, name="Kindle", price=60, category="tablets", condition="fair")

    phones = client.get("/api/products", params={"category": "phones"}).json()
    assert {p["name"] for p in phones["products"]} == {"Pixel 7", "iPhone 13"}

    mid_range = client.get("/api/products", params={"minPrice": 100, "maxPrice": 500}).json()
    assert {p["name"] for p in mid_range["products"]} == {"Pixel 7", "iPhone 13"}

    by_tag = client.get("/api/products", params={"searchTerm": "andro"}).json()
    assert [p["name"] for p in by_tag["products"]] == ["Pixel 7"]

    fair = client.get("/api/products", params={"condition": "fair"}).json()
    assert [p["name"] for p in fair["products"]] == ["Kindle"]

    cheapest_first = client.get("/api/products", params={"sortBy": "price", "sortOrder": "asc"}).json()
    assert [p["price"] for p in cheapest_first["products"]] == [60, 300, 450, 800]

    page_two = client.get(
        "/api/products", params={"sortBy": "price", "sortOrder": "asc", "page": 2, "limit": 3}
    ).json()
    assert [p["name"] for p in page_two["products"]] == ["MacBook Air"]
    assert page_two["totalPages"] == 2
    assert page_two["currentPage"] == 2
    assert page_two["totalProducts"] == 4


def test_get_product_is_repeatable(client, seller, make_product):
    product_id = make_product(seller)
    first = client.get(f"/api/products/{product_id}")
    second = client.get(f"/api/products/{product_id}")
    assert first.status_code == 200
    assert first.content == second.content


def test_seller_edit_resets_approval(client, seller, make_product):
    product_id = make_product(seller, approved=True)
    response = client.put(
        f"/api/products/{product_id}", json={"price": 89.5, "approved": True}, headers=seller.headers
    )
    assert response.status_code == 200
    assert response.json()["price"] == 89.5
    assert response.json()["approved"] is False
    assert client.get(f"/api/products/{product_id}").status_code == 404


def test_other_seller_cannot_edit_or_delete(client, seller, make_user, make_product):
    from refurbmart.models import Role

    intruder = make_user(Role.SELLER)
    product_id = make_product(seller)

    assert client.put(f"/api/products/{product_id}", json={"price": 1}, headers=intruder.headers).status_code == 403
    assert client.delete(f"/api/products/{product_id}", headers=intruder.headers).status_code == 403


def test_admin_edit_keeps_or_sets_approval(client, seller, admin, make_product):
    product_id = make_product(seller, approved=True)

    kept = client.put(f"/api/products/{product_id}", json={"stockQuantity": 9}, headers=admin.headers)
    assert kept.json()["approved"] is True
    assert kept.json()["stockQuantity"] == 9

    revoked = client.put(f"/api/products/{product_id}", json={"approved": False}, headers=admin.headers)
    assert revoked.json()["approved"] is False


def test_update_missing_product_is_not_found(client, seller):
    response = client.put("/api/products/4242", json={"price": 10}, headers=seller.headers)
    assert response.status_code == 404


def test_delete_product_keeps_order_history(client, seller, buyer, make_product, address):
    product_id = make_product(seller, name="Galaxy S21", price=250, stock=3)
    order = client.post(
        "/api/orders",
        json={"items": [{"productId": product_id, "quantity": 1}], "shippingAddress": address},
        headers=buyer.headers,
    ).json()

    deleted = client.delete(f"/api/products/{product_id}", headers=seller.headers)
    assert deleted.status_code == 200

    history = client.get(f"/api/orders/{order['id']}", headers=buyer.headers).json()
    item = history["items"][0]
    assert item["productId"] is None
    assert item["productName"] == "Galaxy S21"
    assert item["priceAtPurchase"] == 250
    assert item["productImages"] == []
