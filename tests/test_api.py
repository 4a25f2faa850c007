from bson import ObjectId
from fastapi.testclient import TestClient

import main
from conftest import auth_headers, color_variation, insert_discount, insert_product, insert_promotion, insert_user
from schemas import Bilingual, Sku

SHIPPING = {"address": "12 Nile St", "city": "Cairo", "postal_code": "11511", "country": "EG"}


def test_health(client):
    assert client.get("/").json() == {"message": "Bilingual Shop API running"}


def test_register_login_me(client):
    res = client.post("/api/auth/register", json={"name": "Mona", "email": "mona@example.com", "password": "s3cret!"})
    assert res.status_code == 200

    again = client.post("/api/auth/register", json={"name": "Mona", "email": "mona@example.com", "password": "x"})
    assert again.status_code == 400

    bad = client.post("/api/auth/login", json={"email": "mona@example.com", "password": "wrong"})
    assert bad.status_code == 401

    token = client.post("/api/auth/login", json={"email": "mona@example.com", "password": "s3cret!"}).json()["access_token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "mona@example.com"
    assert me["role"] == "user"
    assert "password_hash" not in me


def test_cart_requires_auth(client):
    assert client.get("/api/cart").status_code == 401
    assert client.get("/api/cart", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_cart_flow_in_arabic(client, db):
    uid = insert_user(db)
    pid = insert_product(db, base_price=100)
    insert_promotion(db, pid, 20)

    res = client.post("/api/cart", json={"product_id": pid, "quantity": 2}, headers=auth_headers(uid))
    assert res.status_code == 201
    assert res.json()["cart"][0]["price"] == 80.0

    arabic = client.get("/api/cart", headers=auth_headers(uid, **{"Accept-Language": "ar-EG,ar;q=0.9"})).json()
    assert arabic["cart"][0]["name"] == "مصباح مكتب"

    raw = client.get("/api/cart", headers=auth_headers(uid, **{"x-admin-request": "true"})).json()
    assert raw["cart"][0]["name"] == {"en": "Desk Lamp", "ar": "مصباح مكتب"}

    updated = client.put("/api/cart", json={"product_id": pid, "quantity": 0}, headers=auth_headers(uid)).json()
    assert updated["cart"] == []


def test_cart_errors_map_to_status_codes(client, db):
    uid = insert_user(db)
    pid = insert_product(db)
    headers = auth_headers(uid)

    missing = client.post("/api/cart", json={"product_id": str(ObjectId())}, headers=headers)
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Product not found"}

    assert client.post("/api/cart", json={"product_id": pid, "quantity": "abc"}, headers=headers).status_code == 400
    assert client.post("/api/cart", json={"product_id": pid, "quantity": -2}, headers=headers).status_code == 400
    assert client.post("/api/cart", json={"product_id": pid, "quantity": "1e30"}, headers=headers).status_code == 400
    assert client.put("/api/cart", json={"product_id": pid, "quantity": 1}, headers=headers).status_code == 404
    assert client.delete("/api/cart/clear", headers=headers).json() == {"message": "Cart cleared successfully."}


def test_checkout_with_discount_and_admin_updates(client, db):
    uid = insert_user(db)
    admin = insert_user(db, "admin@example.com", role="admin")
    sku = Sku(name=Bilingual(en="Large", ar="كبير"), price=50, stock=5)
    pid = insert_product(db, variations=[color_variation(sku)])
    insert_discount(db, "FLAT150", fixed_amount=150)

    client.post("/api/cart", json={"product_id": pid, "quantity": 2, "selected_variant_id": sku.id},
                headers=auth_headers(uid))
    check = client.post("/api/discounts/validate", json={"code": "FLAT150"}, headers=auth_headers(uid)).json()
    assert check == {"code": "FLAT150", "amount": 100.0, "items_price": 100.0, "total_price": 0.0}

    res = client.post("/api/orders", json={"shipping_address": SHIPPING, "payment_method": "card",
                                           "discount_code": "FLAT150"}, headers=auth_headers(uid))
    assert res.status_code == 201
    order = res.json()
    assert order["total_price"] == 0.0
    assert order["discount"] == {"code": "FLAT150", "amount": 100.0}
    assert client.get("/api/cart", headers=auth_headers(uid)).json() == {"cart": []}

    detail = client.get(f"/api/orders/{order['id']}", headers=auth_headers(uid)).json()
    assert detail["order_items"][0]["variant_details"] == [{"variation_name": "Color", "option_name": "Red"}]

    stranger = insert_user(db, "other@example.com")
    assert client.get(f"/api/orders/{order['id']}", headers=auth_headers(stranger)).status_code == 401
    assert client.put(f"/api/orders/{order['id']}/pay", json={}, headers=auth_headers(uid)).status_code == 401

    paid = client.put(f"/api/orders/{order['id']}/pay", json={"email_address": "buyer@example.com"},
                      headers=auth_headers(admin)).json()
    assert paid["is_paid"] is True
    assert paid["payment_result"]["email_address"] == "buyer@example.com"
    delivered = client.put(f"/api/orders/{order['id']}/deliver", headers=auth_headers(admin)).json()
    assert delivered["is_delivered"] is True

    assert len(client.get("/api/orders/myorders", headers=auth_headers(uid)).json()) == 1
    assert len(client.get("/api/orders", headers=auth_headers(admin)).json()) == 1
    assert client.put(f"/api/orders/{ObjectId()}/deliver", headers=auth_headers(admin)).status_code == 404

    stats = client.get("/api/dashboard/summary-stats", headers=auth_headers(admin)).json()
    assert stats["total_orders"] == 1
    assert stats["total_users"] == 3


def test_empty_cart_checkout(client, db):
    uid = insert_user(db)
    res = client.post("/api/orders", json={"shipping_address": SHIPPING, "payment_method": "card"},
                      headers=auth_headers(uid))
    assert res.status_code == 400
    assert res.json() == {"detail": "Your cart is empty"}


def test_out_of_stock_checkout(client, db):
    uid = insert_user(db)
    pid = insert_product(db, stock=1)
    client.post("/api/cart", json={"product_id": pid, "quantity": 3}, headers=auth_headers(uid))
    res = client.post("/api/orders", json={"shipping_address": SHIPPING, "payment_method": "card"},
                      headers=auth_headers(uid))
    assert res.status_code == 400
    assert "Insufficient stock" in res.json()["detail"]


def test_discount_admin_rejects_both_kinds(client, db):
    admin = insert_user(db, "admin@example.com", role="admin")
    both = client.post("/api/discounts", json={"code": "BOTH", "percentage": 10, "fixed_amount": 5},
                       headers=auth_headers(admin))
    assert both.status_code == 400

    created = client.post("/api/discounts", json={"code": "OK10", "percentage": 10, "usage_count": 40},
                          headers=auth_headers(admin))
    assert created.status_code == 201
    assert db["discount"].find_one({"code": "OK10"})["usage_count"] == 0

    duplicate = client.post("/api/discounts", json={"code": "OK10", "fixed_amount": 5}, headers=auth_headers(admin))
    assert duplicate.status_code == 400


def test_advertisement_admin_and_public_list(client, db):
    admin = insert_user(db, "admin@example.com", role="admin")
    pid = insert_product(db)
    body = {
        "title": {"en": "Weekly deal", "ar": "عرض الأسبوع"},
        "type": "weeklyOffer",
        "product_ref": pid,
        "discount_percentage": 15,
        "start_date": "2026-01-01T00:00:00Z",
        "end_date": "2026-12-31T23:59:59Z",
    }
    res = client.post("/api/advertisements", json=body, headers=auth_headers(admin))
    assert res.status_code == 201

    backwards = {**body, "start_date": "2026-12-31T00:00:00Z", "end_date": "2026-01-01T00:00:00Z"}
    assert client.post("/api/advertisements", json=backwards, headers=auth_headers(admin)).status_code == 400
    unknown = {**body, "product_ref": str(ObjectId())}
    assert client.post("/api/advertisements", json=unknown, headers=auth_headers(admin)).status_code == 400

    ads = client.get("/api/advertisements?type=weeklyOffer", headers={"Accept-Language": "ar"}).json()
    assert len(ads) == 1
    assert ads[0]["title"] == "عرض الأسبوع"
    assert ads[0]["product"]["name"] == "مصباح مكتب"

    raw = client.get(f"/api/advertisements/{res.json()['id']}/raw", headers=auth_headers(admin)).json()
    assert raw["title"]["en"] == "Weekly deal"


def test_product_admin_routes(client, db):
    admin = insert_user(db, "admin@example.com", role="admin")
    user = insert_user(db)
    body = {"name": {"en": "Mug", "ar": "كوب"}, "base_price": 12.5, "stock": 3}

    assert client.post("/api/products", json=body, headers=auth_headers(user)).status_code == 401
    created = client.post("/api/products", json=body, headers=auth_headers(admin))
    assert created.status_code == 201
    pid = created.json()["id"]

    assert client.get(f"/api/products/{pid}").json()["name"] == "Mug"
    assert client.get("/api/products").json()["total"] == 1
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404

    sku = {"id": "dup", "name": {"en": "A"}, "price": 1, "stock": 1}
    dup = {**body, "variations": [{"name": {"en": "Size"}, "options": [{"name": {"en": "S"}, "skus": [sku, sku]}]}]}
    assert client.put(f"/api/products/{pid}", json=dup, headers=auth_headers(admin)).status_code == 400

    assert client.delete(f"/api/products/{pid}", headers=auth_headers(admin)).json() == {"deleted": True}
    assert client.delete(f"/api/products/{pid}", headers=auth_headers(admin)).status_code == 404


def test_profile_and_password_change(client):
    token = client.post("/api/auth/register", json={"name": "Mona", "email": "mona@example.com",
                                                    "password": "s3cret!"}).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    renamed = client.put("/api/auth/profile", json={"name": "Mona A."}, headers=headers).json()
    assert renamed["name"] == "Mona A."
    assert client.get("/api/auth/me", headers=headers).json()["name"] == "Mona A."

    wrong = client.put("/api/auth/profile/password", json={"current_password": "nope", "new_password": "newpass1"},
                       headers=headers)
    assert wrong.status_code == 401
    short = client.put("/api/auth/profile/password", json={"current_password": "s3cret!", "new_password": "abc"},
                       headers=headers)
    assert short.status_code == 400

    ok = client.put("/api/auth/profile/password", json={"current_password": "s3cret!", "new_password": "newpass1"},
                    headers=headers)
    assert ok.json() == {"message": "Password updated successfully"}
    assert client.post("/api/auth/login", json={"email": "mona@example.com", "password": "s3cret!"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "mona@example.com", "password": "newpass1"}).status_code == 200


def test_get_category(client, db):
    admin = insert_user(db, "admin@example.com", role="admin")
    created = client.post("/api/categories", json={"name": {"en": "Lighting", "ar": "إضاءة"}},
                          headers=auth_headers(admin))
    cid = created.json()["id"]

    assert client.get(f"/api/categories/{cid}", headers={"Accept-Language": "ar"}).json()["name"] == "إضاءة"
    assert client.get(f"/api/categories/{ObjectId()}").status_code == 404
    assert client.get("/api/categories/garbage").status_code == 404


def test_product_reviews(client, db):
    uid = insert_user(db)
    admin = insert_user(db, "admin@example.com", role="admin")
    pid = insert_product(db)

    res = client.post(f"/api/products/{pid}/reviews", json={"rating": 4, "comment": "Nice"}, headers=auth_headers(uid))
    assert res.status_code == 201
    again = client.post(f"/api/products/{pid}/reviews", json={"rating": 1}, headers=auth_headers(uid))
    assert again.status_code == 400
    assert again.json() == {"detail": "Product already reviewed"}
    assert client.post(f"/api/products/{pid}/reviews", json={"rating": 6}, headers=auth_headers(admin)).status_code == 400

    product = client.get(f"/api/products/{pid}").json()
    assert product["num_reviews"] == 1
    assert product["average_rating"] == 4
    assert product["reviews"][0]["name"] == "buyer"

    # an admin edit keeps the reviews
    body = {"name": {"en": "Desk Lamp v2"}, "base_price": 120, "stock": 10}
    client.put(f"/api/products/{pid}", json=body, headers=auth_headers(admin))
    assert client.get(f"/api/products/{pid}").json()["num_reviews"] == 1


def test_wishlist_routes(client, db):
    uid = insert_user(db)
    pid = insert_product(db)
    insert_promotion(db, pid, 10)
    headers = auth_headers(uid, **{"Accept-Language": "ar"})

    added = client.post(f"/api/wishlist/{pid}", headers=headers).json()
    assert added["message"] == "Product added to wishlist successfully."
    assert added["wishlist"][0]["name"] == "مصباح مكتب"
    assert added["wishlist"][0]["advertisement"]["discount_percentage"] == 10

    assert client.post(f"/api/wishlist/{ObjectId()}", headers=headers).status_code == 404
    assert len(client.get("/api/wishlist", headers=headers).json()) == 1
    removed = client.delete(f"/api/wishlist/{pid}", headers=headers).json()
    assert removed["wishlist"] == []
    assert client.get("/api/wishlist").status_code == 401


def test_startup_creates_indexes_and_admin(db, monkeypatch):
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(main, "ADMIN_PASSWORD", "adminpass")
    db["user"].drop_indexes()

    with TestClient(main.app):
        pass

    admin = db["user"].find_one({"email": main.ADMIN_EMAIL})
    assert admin["role"] == "admin"
    assert any(index["key"] == [("email", 1)] for index in db["user"].index_information().values())
