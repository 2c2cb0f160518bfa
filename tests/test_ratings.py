import pytest

import ratings
from conftest import auth
from errors import InvalidRating, NotFound


def test_rating_replaces_and_averages(client, register, make_product):
    product = make_product()
    first = register()["token"]
    second = register(name="Ravi", email="ravi@example.com")["token"]

    assert client.post(f"/api/products/{product}/rate", headers=auth(first), json={"rating": 5}).status_code == 200
    response = client.post(f"/api/products/{product}/rate", headers=auth(second), json={"rating": 2})
    assert response.json() == {"message": "Rating saved successfully", "average_rating": 3.5}

    response = client.post(f"/api/products/{product}/rate", headers=auth(first), json={"rating": 3})
    assert response.json()["average_rating"] == 2.5

    body = client.get(f"/api/products/{product}").json()
    assert len(body["ratings"]) == 2
    assert body["average_rating"] == 2.5
    assert client.get(f"/api/products/{product}").json()["average_rating"] == body["average_rating"]

    assert client.get(f"/api/products/{product}/userRating", headers=auth(first)).json() == {"rating": 3}


@pytest.mark.parametrize("value", [0, 6, -1])
def test_rating_out_of_range_rejected(client, user_token, make_product, value):
    product = make_product()
    response = client.post(f"/api/products/{product}/rate", headers=auth(user_token), json={"rating": value})
    assert response.status_code == 400
    assert response.json()["message"] == "Rating must be between 1 and 5"


def test_rating_unknown_product(client, user_token):
    response = client.post("/api/products/64b0000000000000000000ff/rate", headers=auth(user_token),
                           json={"rating": 4})
    assert response.status_code == 404


def test_user_rating_missing(client, user_token, make_product):
    product = make_product()
    response = client.get(f"/api/products/{product}/userRating", headers=auth(user_token))
    assert response.status_code == 404
    assert response.json()["message"] == "Rating not found"


def test_unrated_product_has_no_average(client, make_product):
    product = make_product()
    assert "average_rating" not in client.get(f"/api/products/{product}").json()


def test_rate_requires_auth(client, make_product):
    product = make_product()
    assert client.post(f"/api/products/{product}/rate", json={"rating": 4}).status_code == 401


def test_service_level_rating(db, make_product):
    product = make_product()
    ratings.rate_product(db, product, "u1", 4)
    ratings.rate_product(db, product, "u2", 1)
    result = ratings.rate_product(db, product, "u1", 5)
    assert result["average_rating"] == 3.0
    with pytest.raises(InvalidRating):
        ratings.rate_product(db, product, "u1", True)
    with pytest.raises(NotFound):
        ratings.get_user_rating(db, product, "u3")


def test_average_of_empty_list_is_unset():
    assert ratings.average([]) is None
