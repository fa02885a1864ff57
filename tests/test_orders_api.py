import pytest

from bookhaven.core import db
from bookhaven.models import Order


@pytest.fixture
def in_cart(user, book, add_to_cart):
    return add_to_cart(user, book, quantity=2)


def place(client, auth_header, user, book_id):
    return client.post("/orders", json={"bookId": book_id}, headers=auth_header(user))


def test_place_order(client, auth_header, user, book, in_cart):
    resp = place(client, auth_header, user, book.id)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["discountPercentage"] == 0.0
    assert data["totalOrders"] == 1
    assert data["currentOrderBookCount"] == 2
    assert data["order"]["status"] == "Pending"
    assert data["order"]["total"] == "40.00"


def test_place_order_requires_token(client, book):
    assert client.post("/orders", json={"bookId": book.id}).status_code == 401


def test_place_order_with_bad_token(client, book):
    resp = client.post("/orders", json={"bookId": book.id}, headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_place_order_errors(client, auth_header, user, book, in_cart):
    assert place(client, auth_header, user, 0).status_code == 400
    assert place(client, auth_header, user, 999).status_code == 404
    assert place(client, auth_header, user, book.id).status_code == 201
    dup = place(client, auth_header, user, book.id)
    assert dup.status_code == 400
    assert dup.get_json()["message"] == "Book already in order."
    assert Order.query.count() == 1


def test_place_order_without_cart_entry(client, auth_header, user, book):
    assert place(client, auth_header, user, book.id).status_code == 400


def test_place_order_rejects_malformed_body(client, auth_header, user):
    resp = client.post("/orders", json={"bookId": "abc"}, headers=auth_header(user))
    assert resp.status_code == 400
    resp = client.post("/orders", data="nope", headers=auth_header(user))
    assert resp.status_code == 400


def test_approve_requires_staff(client, auth_header, user, book, in_cart):
    code = place(client, auth_header, user, book.id).get_json()["order"]["claimCode"]
    resp = client.post("/orders/approve", json={"claimCode": code}, headers=auth_header(user))
    assert resp.status_code == 403


def test_staff_approves_by_claim_code(client, auth_header, user, staff, book, in_cart):
    code = place(client, auth_header, user, book.id).get_json()["order"]["claimCode"]

    resp = client.post("/orders/approve", json={"claimCode": code}, headers=auth_header(staff))
    assert resp.status_code == 200
    assert resp.get_json()["order"]["status"] == "Purchased"

    again = client.post("/orders/approve", json={"claimCode": code}, headers=auth_header(staff))
    assert again.status_code == 400
    unknown = client.post("/orders/approve", json={"claimCode": "UNKNOWNCODE1"}, headers=auth_header(staff))
    assert unknown.status_code == 404


def test_admin_counts_as_staff(client, auth_header, user, admin, book, in_cart):
    code = place(client, auth_header, user, book.id).get_json()["order"]["claimCode"]
    resp = client.post("/orders/approve", json={"claimCode": code}, headers=auth_header(admin))
    assert resp.status_code == 200


def test_cancel_route(client, auth_header, user, book, in_cart):
    order_id = place(client, auth_header, user, book.id).get_json()["order"]["id"]

    first = client.patch(f"/orders/{order_id}/cancel", headers=auth_header(user))
    assert first.get_json() == {"message": "One copy cancelled.", "quantity": 1}
    second = client.patch(f"/orders/{order_id}/cancel", headers=auth_header(user))
    assert second.get_json() == {"message": "Order cancelled.", "quantity": 0}
    third = client.patch(f"/orders/{order_id}/cancel", headers=auth_header(user))
    assert third.status_code == 409


def test_delete_route(client, auth_header, user, staff, book, in_cart):
    order = place(client, auth_header, user, book.id).get_json()["order"]
    client.post("/orders/approve", json={"claimCode": order["claimCode"]}, headers=auth_header(staff))

    resp = client.delete(f"/orders/{order['id']}", headers=auth_header(user))
    assert resp.status_code == 409
    assert db.session.get(Order, order["id"]) is not None


def test_delete_pending_order(client, auth_header, user, book, in_cart):
    order_id = place(client, auth_header, user, book.id).get_json()["order"]["id"]
    assert client.delete(f"/orders/{order_id}", headers=auth_header(user)).status_code == 200
    assert client.get("/orders", headers=auth_header(user)).get_json() == []


def test_order_listings(client, auth_header, user, staff, book, in_cart, purchased_history):
    purchased_history(user, 4)
    place(client, auth_header, user, book.id)

    mine = client.get("/orders", headers=auth_header(user)).get_json()
    assert len(mine) == 5

    preview = client.get("/orders/with-discount", headers=auth_header(user)).get_json()
    assert preview["purchasedCount"] == 4
    assert preview["nextDiscountPercentage"] == 5.0

    assert client.get("/orders/all", headers=auth_header(user)).status_code == 403
    assert len(client.get("/orders/all", headers=auth_header(staff)).get_json()) == 5
    assert len(client.get(f"/orders/user/{user.id}", headers=auth_header(staff)).get_json()) == 5
    assert client.get("/orders/user/999", headers=auth_header(staff)).status_code == 404


def test_update_claim_code_route(client, auth_header, user, staff, book, in_cart, make_book, add_to_cart):
    first = place(client, auth_header, user, book.id).get_json()["order"]
    other = make_book(title="Other")
    add_to_cart(user, other)
    second = place(client, auth_header, user, other.id).get_json()["order"]

    url = "/orders/update-claim-code"
    short = client.post(url, json={"orderId": first["id"], "newClaimCode": "ABC"}, headers=auth_header(staff))
    assert short.status_code == 400
    taken = client.post(url, json={"orderId": first["id"], "newClaimCode": second["claimCode"]},
                        headers=auth_header(staff))
    assert taken.status_code == 409
    ok = client.post(url, json={"orderId": first["id"], "newClaimCode": "PICKUP-00001"}, headers=auth_header(staff))
    assert ok.status_code == 200
    assert ok.get_json()["order"]["claimCode"] == "PICKUP-00001"
    forbidden = client.post(url, json={"orderId": first["id"], "newClaimCode": "PICKUP-00002"},
                            headers=auth_header(user))
    assert forbidden.status_code == 403


def test_update_claim_code_rejects_overlong_code(client, auth_header, user, staff, book, in_cart):
    order = place(client, auth_header, user, book.id).get_json()["order"]
    resp = client.post("/orders/update-claim-code", json={"orderId": order["id"], "newClaimCode": "X" * 65},
                       headers=auth_header(staff))
    assert resp.status_code == 400
    assert db.session.get(Order, order["id"]).claim_code == order["claimCode"]
