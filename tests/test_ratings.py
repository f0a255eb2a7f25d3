from database import db


def rate(client, headers, product_id, rating, review=None):
    return client.post(
        "/api/ratings",
        json={"product_id": product_id, "rating": rating, "review": review},
        headers=headers,
    )


def test_create_rating_updates_product_aggregates(client, make_product, user_headers, other_user_headers):
    product = make_product()

    response = rate(client, user_headers, product["id"], 5, "Bagus sekali")
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["full_name"] == "Budi"
    assert data["product_name"] == product["name"]
    assert data["has_description"] is True

    rate(client, other_user_headers, product["id"], 2)

    stored = client.get(f"/api/products/{product['id']}").json()["data"]
    assert stored["average_rating"] == 3.5
    assert stored["total_ratings"] == 2
    assert stored["total_reviews"] == 1


def test_rating_out_of_range(client, make_product, user_headers):
    product = make_product()
    for value in (0, 6):
        response = rate(client, user_headers, product["id"], value)
        assert response.status_code == 400
        assert response.json()["message"] == "Rating must be between 1 and 5"
    assert db["rating"].count_documents({}) == 0


def test_rating_unknown_product(client, user_headers):
    response = rate(client, user_headers, "0123456789abcdef01234567", 4)
    assert response.status_code == 404


def test_same_user_can_rate_twice(client, make_product, user_headers):
    product = make_product()
    rate(client, user_headers, product["id"], 3)
    rate(client, user_headers, product["id"], 5, "Lebih baik")

    response = client.get(f"/api/ratings/products/{product['id']}/rating/latest", headers=user_headers)
    assert response.json()["data"]["rating"] == 5

    response = client.get(f"/api/ratings/products/{product['id']}/ratings/me", headers=user_headers)
    assert response.json()["pagination"]["total"] == 2


def test_rating_check(client, make_product, user_headers):
    product = make_product()
    response = client.get(f"/api/ratings/products/{product['id']}/rating/check", headers=user_headers)
    assert response.json()["data"] == {"has_rated": False, "latest_rating": None}

    rate(client, user_headers, product["id"], 4)
    response = client.get(f"/api/ratings/products/{product['id']}/rating/check", headers=user_headers)
    assert response.json()["data"]["has_rated"] is True


def test_update_rating_owner_only(client, make_product, user_headers, other_user_headers):
    product = make_product()
    rating_id = rate(client, user_headers, product["id"], 2).json()["data"]["id"]

    response = client.put(f"/api/ratings/{rating_id}", json={"rating": 4}, headers=other_user_headers)
    assert response.status_code == 403

    response = client.put(f"/api/ratings/{rating_id}", json={"rating": 4, "review": "Oke"}, headers=user_headers)
    assert response.status_code == 200
    assert response.json()["data"]["rating"] == 4

    stored = client.get(f"/api/products/{product['id']}").json()["data"]
    assert stored["average_rating"] == 4
    assert stored["total_reviews"] == 1


def test_update_rating_out_of_range(client, make_product, user_headers):
    product = make_product()
    rating_id = rate(client, user_headers, product["id"], 2).json()["data"]["id"]

    response = client.put(f"/api/ratings/{rating_id}", json={"rating": 9}, headers=user_headers)
    assert response.status_code == 400


def test_delete_rating(client, make_product, user_headers, other_user_headers):
    product = make_product()
    rating_id = rate(client, user_headers, product["id"], 5).json()["data"]["id"]

    assert client.delete(f"/api/ratings/{rating_id}", headers=other_user_headers).status_code == 403
    assert client.delete(f"/api/ratings/{rating_id}", headers=user_headers).status_code == 200
    assert client.delete(f"/api/ratings/{rating_id}", headers=user_headers).status_code == 404

    stored = client.get(f"/api/products/{product['id']}").json()["data"]
    assert stored["total_ratings"] == 0
    assert stored["average_rating"] == 0


def test_product_ratings_and_reviews(client, make_product, user_headers, other_user_headers):
    product = make_product()
    rate(client, user_headers, product["id"], 5, "Halus")
    rate(client, other_user_headers, product["id"], 3)

    response = client.get(f"/api/ratings/products/{product['id']}/ratings")
    meta = response.json()["meta"]
    assert meta["average"] == 4
    assert meta["count"] == 2
    assert meta["reviews_with_description"] == 1

    response = client.get(f"/api/ratings/products/{product['id']}/ratings", params={"reviews_only": "true"})
    assert [r["review"] for r in response.json()["data"]] == ["Halus"]

    response = client.get(f"/api/ratings/products/{product['id']}/reviews")
    assert response.json()["pagination"]["total"] == 1


def test_all_ratings_and_mine(client, make_product, user_headers, other_user_headers):
    first = make_product("Songket")
    second = make_product("Batik")
    rate(client, user_headers, first["id"], 4)
    rate(client, other_user_headers, second["id"], 2)

    response = client.get("/api/ratings")
    meta = response.json()["meta"]
    assert meta["average"] == 3
    assert meta["count"] == 2

    response = client.get("/api/ratings/me", headers=user_headers)
    assert [r["product_name"] for r in response.json()["data"]] == ["Songket"]


def test_update_rating_clears_review(client, make_product, user_headers):
    product = make_product()
    rating_id = rate(client, user_headers, product["id"], 4, "Bagus").json()["data"]["id"]

    response = client.put(f"/api/ratings/{rating_id}", json={"review": ""}, headers=user_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["rating"] == 4
    assert data["has_description"] is False

    stored = client.get(f"/api/products/{product['id']}").json()["data"]
    assert stored["total_reviews"] == 0


def test_update_rating_keeps_review_when_omitted(client, make_product, user_headers):
    product = make_product()
    rating_id = rate(client, user_headers, product["id"], 4, "Bagus").json()["data"]["id"]

    response = client.put(f"/api/ratings/{rating_id}", json={"rating": 5}, headers=user_headers)
    assert response.json()["data"]["review"] == "Bagus"
