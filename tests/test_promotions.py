from datetime import datetime, timedelta, timezone

from bson import ObjectId

import promotions
from database import db, now
from promotions import expire_promotions, render_banner


def iso(delta_days):
    return (datetime.now(timezone.utc) + timedelta(days=delta_days)).isoformat()


def promotion_payload(*items, **overrides):
    payload = {
        "title": "Easter Sale",
        "type": "discount promo",
        "description": "Up to 20% off",
        "startDate": iso(-1),
        "endDate": iso(7),
        "discountPercentage": 20,
        "products": [
            {"product": str(product["_id"]), "quantity": quantity, "mainPrice": product["price"],
             "promoPrice": product["price"] * 0.8}
            for product, quantity in items
        ],
        "template": "<div><h1>Easter Sale</h1><p>Phones &amp; laptops at 20% off</p></div>",
    }
    payload.update(overrides)
    return payload


def create_promotion(client, headers, *items, **overrides):
    res = client.post("/api/admin/promotion/", json=promotion_payload(*items, **overrides), headers=headers)
    assert res.status_code == 201, res.json()
    return res.json()["data"]


def test_render_banner_is_jpeg():
    data = render_banner("Easter Sale", "<h1>Big</h1><p>deals &amp; more</p>")
    assert data[:2] == b"\xff\xd8"


def test_create_promotion_reserves_stock(client, admin, make_product, storage):
    _, headers = admin
    product = make_product(quantity=10)
    promotion = create_promotion(client, headers, (product, 4))

    assert promotion["promoBanner"] == storage.uploaded[0]
    assert promotion["buyOneGetOne"] is False
    assert promotion["products"][0]["name"] == product["name"]

    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["quantity"] == 6
    assert stored["inPromotion"] is True
    assert stored["promotion"] == "discount promo"
    assert stored["promoTitle"] == "Easter Sale"
    assert str(stored["promoId"]) == promotion["id"]


def test_buy_one_get_one_flag(client, admin, make_product):
    _, headers = admin
    product = make_product()
    promotion = create_promotion(client, headers, (product, 1), type="buyOneGetOne", discountPercentage=None)
    assert promotion["buyOneGetOne"] is True


def test_create_promotion_validation(client, admin, make_product, storage):
    _, headers = admin
    product = make_product(quantity=3)
    url = "/api/admin/promotion/"

    def post(*items, **overrides):
        return client.post(url, json=promotion_payload(*items, **overrides), headers=headers)

    assert post((product, 1), type="flash sale").status_code == 400
    assert post((product, 1), startDate=iso(5), endDate=iso(2)).status_code == 400
    assert post((product, 1), discountPercentage=150).status_code == 400
    assert post((product, 1), template=42).status_code == 400
    assert post((product, 5)).json()["message"] == f"Not enough stock for {product['name']}"
    assert post((product, 1), (product, 1)).status_code == 400

    missing = {"_id": ObjectId(), "price": 10.0}
    assert post((missing, 1)).status_code == 404

    too_cheap = promotion_payload((product, 1))
    too_cheap["products"][0]["promoPrice"] = product["price"] + 1
    assert client.post(url, json=too_cheap, headers=headers).status_code == 400

    assert storage.uploaded == []
    assert db["promotion"].count_documents({}) == 0


def test_product_cannot_join_two_promotions(client, admin, make_product):
    _, headers = admin
    product = make_product()
    create_promotion(client, headers, (product, 1))
    res = client.post("/api/admin/promotion/", json=promotion_payload((product, 1)), headers=headers)
    assert res.status_code == 400
    assert "already in a promotion" in res.json()["message"]


def test_active_promotions(client, admin, make_product):
    _, headers = admin
    product = make_product()
    create_promotion(client, headers, (product, 1))
    db["promotion"].insert_one({"title": "Old", "active": True, "endDate": now() - timedelta(days=1), "products": []})

    res = client.get("/api/admin/promotion/active")
    assert [p["title"] for p in res.json()["data"]] == ["Easter Sale"]


def test_get_promotion(client, admin, make_product):
    _, headers = admin
    promotion = create_promotion(client, headers, (make_product(), 1))
    assert client.get(f"/api/admin/promotion/{promotion['id']}").json()["data"]["title"] == "Easter Sale"
    assert client.get(f"/api/admin/promotion/{ObjectId()}").status_code == 404


def test_update_promotion_propagates_title(client, admin, make_product):
    _, headers = admin
    product = make_product()
    promotion = create_promotion(client, headers, (product, 1))

    res = client.put(
        f"/api/admin/promotion/update/{promotion['id']}", json={"title": "Mega Easter Sale"}, headers=headers
    )
    assert res.status_code == 200
    assert res.json()["data"]["title"] == "Mega Easter Sale"
    assert db["product"].find_one({"_id": product["_id"]})["promoTitle"] == "Mega Easter Sale"

    res = client.put(f"/api/admin/promotion/update/{promotion['id']}", json={"endDate": iso(-30)}, headers=headers)
    assert res.status_code == 400


def test_update_promotion_rejects_past_end_date(client, admin, make_product):
    _, headers = admin
    product = make_product(quantity=10)
    promotion = create_promotion(client, headers, (product, 2), startDate=iso(-3))

    res = client.put(f"/api/admin/promotion/update/{promotion['id']}", json={"endDate": iso(-1)}, headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "End date must be in the future"
    assert db["promotion"].find_one({"_id": ObjectId(promotion["id"])})["endDate"] > now()


def test_create_promotion_rolls_back_when_stock_moves(client, admin, make_product, storage, monkeypatch):
    _, headers = admin
    first = make_product(name="pixel 8", quantity=10)
    second = make_product(name="iphone 15", quantity=10)
    validate = promotions.validate_promo_products

    def validate_then_sell_out(payload):
        products = validate(payload)
        db["product"].update_one({"_id": second["_id"]}, {"$set": {"quantity": 1}})
        return products

    monkeypatch.setattr(promotions, "validate_promo_products", validate_then_sell_out)
    res = client.post("/api/admin/promotion/", json=promotion_payload((first, 4), (second, 3)), headers=headers)
    assert res.status_code == 400

    restored = db["product"].find_one({"_id": first["_id"]})
    assert restored["quantity"] == 10
    assert restored["inPromotion"] is False
    assert restored["promoId"] is None
    assert restored["promotion"] == "none"
    untouched = db["product"].find_one({"_id": second["_id"]})
    assert untouched["quantity"] == 1
    assert not untouched.get("inPromotion")
    assert db["promotion"].count_documents({}) == 0
    assert storage.uploaded and storage.uploaded[0] in storage.deleted


def test_delete_promotion_releases_stock(client, admin, make_product, storage):
    _, headers = admin
    product = make_product(quantity=10)
    promotion = create_promotion(client, headers, (product, 4))

    res = client.delete(f"/api/admin/promotion/{promotion['id']}", headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["restored"] == 1

    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["quantity"] == 10
    assert stored["inPromotion"] is False
    assert stored["promoId"] is None
    assert stored["promotion"] == "none"
    assert db["promotion"].count_documents({}) == 0
    assert storage.deleted == [promotion["promoBanner"]]


def test_release_deletes_products_marked_for_deletion(client, admin, make_product, storage):
    _, headers = admin
    doomed = make_product(name="pixel 8")
    kept = make_product(name="iphone 15", quantity=10)
    promotion = create_promotion(client, headers, (doomed, 1), (kept, 2))
    client.delete(f"/api/admin/product/delete/{doomed['_id']}", headers=headers)
    assert db["product"].find_one({"_id": doomed["_id"]}) is not None

    client.delete(f"/api/admin/promotion/{promotion['id']}", headers=headers)
    assert db["product"].find_one({"_id": doomed["_id"]}) is None
    assert doomed["thumbnail"] in storage.deleted
    assert db["product"].find_one({"_id": kept["_id"]})["quantity"] == 10


def test_expire_promotions_only_touches_ended_ones(client, admin, make_product):
    _, headers = admin
    ending = make_product(name="pixel 8", quantity=5)
    running = make_product(name="iphone 15", quantity=5)
    ended = create_promotion(client, headers, (ending, 2), title="Flash")
    create_promotion(client, headers, (running, 2), title="Long")
    db["promotion"].update_one({"_id": ObjectId(ended["id"])}, {"$set": {"endDate": now() - timedelta(minutes=1)}})

    assert expire_promotions() == 1
    assert [p["title"] for p in db["promotion"].find()] == ["Long"]
    assert db["product"].find_one({"_id": ending["_id"]})["quantity"] == 5
    assert db["product"].find_one({"_id": running["_id"]})["quantity"] == 3
