from bson import ObjectId

from database import create_document, db


def make_order(product, reference="REF1234567", status="paid"):
    create_document("order", {
        "clientName": "Ada Obi",
        "products": [{"product": product["_id"], "description": product["name"], "quantity": 1,
                      "price": product["price"], "thumbnail": product["thumbnail"]}],
        "totalAmount": product["price"],
        "currency": "NGN",
        "reference": reference,
        "status": status,
    })


def post_review(client, headers, product, rating=4, reference="REF1234567"):
    return client.post(
        f"/api/review/{reference}",
        json={"product": str(product["_id"]), "rating": rating, "comment": "Great <b>phone</b>"},
        headers=headers,
    )


def test_create_review_updates_product_and_links_order(client, user, make_product):
    account, headers = user
    product = make_product()
    make_order(product)

    res = post_review(client, headers, product, rating=4)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["comment"] == "Great phone"
    assert data["reviewerName"] == "Ada Obi"

    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["totalRating"] == 4
    assert stored["numReviews"] == 1
    assert db["order"].find_one({"reference": "REF1234567"})["clientId"] == account["_id"]


def test_review_rules(client, user, admin, make_product):
    _, headers = user
    _, admin_headers = admin
    product = make_product()
    other = make_product(name="pixel 8")
    make_order(product)
    make_order(product, reference="PENDING001", status="pending")

    assert post_review(client, admin_headers, product).status_code == 403
    assert post_review(client, headers, product, reference="MISSING001").status_code == 404
    assert post_review(client, headers, product, reference="PENDING001").status_code == 403
    assert post_review(client, headers, other).status_code == 403
    assert post_review(client, headers, product, rating=6).status_code == 400

    assert post_review(client, headers, product).status_code == 201
    res = post_review(client, headers, product)
    assert res.status_code == 403
    assert res.json()["message"] == "You have already reviewed this product"


def test_list_reviews(client, user, admin, make_product):
    _, headers = user
    _, admin_headers = admin
    product = make_product()
    make_order(product)
    post_review(client, headers, product)

    assert len(client.get(f"/api/review/{product['_id']}").json()["data"]) == 1
    assert client.get(f"/api/review/{ObjectId()}").json()["data"] == []
    assert len(client.get("/api/review/user", headers=headers).json()["data"]) == 1
    assert client.get("/api/review/all", headers=headers).status_code == 403
    assert len(client.get("/api/review/all", headers=admin_headers).json()["data"]) == 1


def test_author_edits_rating(client, user, make_product):
    _, headers = user
    product = make_product()
    make_order(product)
    review_id = post_review(client, headers, product, rating=2).json()["data"]["id"]

    res = client.put(f"/api/review/{review_id}", json={"rating": 5}, headers=headers)
    assert res.status_code == 200
    assert db["product"].find_one({"_id": product["_id"]})["totalRating"] == 5


def test_admin_responds_to_review(client, user, admin, make_product):
    _, headers = user
    _, admin_headers = admin
    product = make_product()
    make_order(product)
    review_id = post_review(client, headers, product).json()["data"]["id"]

    assert client.put(f"/api/review/{review_id}", json={"rating": 1}, headers=admin_headers).status_code == 403
    assert client.put(f"/api/review/{review_id}", json={"response": "Thanks"}, headers=headers).status_code == 403

    res = client.put(f"/api/review/{review_id}", json={"response": "Thank you!"}, headers=admin_headers)
    assert res.status_code == 200
    response = res.json()["data"]["response"]
    assert response["comment"] == "Thank you!"
    assert response["responder"] == "Tobi Admin"


def test_delete_review(client, user, make_user, make_product):
    _, headers = user
    _, stranger_headers = make_user(email="eve@example.com", phone="07011112222")
    product = make_product()
    make_order(product)
    review_id = post_review(client, headers, product).json()["data"]["id"]

    assert client.delete(f"/api/review/{review_id}", headers=stranger_headers).status_code == 403
    assert client.delete(f"/api/review/{review_id}", headers=headers).status_code == 200
    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["numReviews"] == 0
    assert client.delete(f"/api/review/{review_id}", headers=headers).status_code == 404
