import pytest

from carmarket.models import Review


@pytest.fixture
def trip(make_agency, make_car, make_user, make_booking):
    agency, owner = make_agency()
    customer = make_user(name="Salma")
    car = make_car(agency)
    booking = make_booking(car, customer=customer, status="completed")
    return agency, owner, customer, car, booking


def _create(client, headers, booking, **extra):
    return client.post("/api/reviews", headers=headers, json=dict({"bookingId": booking.id, "rating": 4}, **extra))


def test_review_created_once_per_booking(client, db, trip, auth_headers):
    _, _, customer, car, booking = trip
    headers = auth_headers(customer)

    r = _create(client, headers, booking, comment="Clean car", cleanlinessRating=5)
    assert r.status_code == 201
    review = r.json()["review"]
    assert review["rating"] == 4
    assert review["isVerified"] is True
    assert review["customerName"] == "Salma"
    assert review["car"]["make"] == "Dacia"

    r = _create(client, headers, booking)
    assert r.status_code == 400
    assert r.json() == {"error": "You have already reviewed this booking"}
    assert db.query(Review).count() == 1


@pytest.mark.parametrize("given, stored", [(7, 5), (0, 1), (-3, 1), ("3", 3)])
def test_rating_is_clamped(client, db, trip, auth_headers, given, stored):
    _, _, customer, _, booking = trip
    r = _create(client, auth_headers(customer), booking, rating=given)
    assert r.status_code == 201
    assert db.query(Review).one().rating == stored


def test_review_guards(client, trip, make_user, make_car, make_booking, auth_headers):
    agency, owner, customer, car, booking = trip

    assert _create(client, auth_headers(owner), booking).status_code == 403
    assert client.post("/api/reviews", headers=auth_headers(customer), json={"bookingId": booking.id}).status_code == 400
    assert _create(client, auth_headers(customer), booking, rating="great").status_code == 400
    assert client.post("/api/reviews", headers=auth_headers(customer), json={"bookingId": 9999, "rating": 4}).status_code == 404
    assert _create(client, auth_headers(make_user()), booking).status_code == 403

    upcoming = make_booking(car, customer=customer, status="confirmed", start_in_days=40)
    r = _create(client, auth_headers(customer), upcoming)
    assert r.status_code == 400
    assert r.json() == {"error": "You can only review completed bookings"}


def test_list_reviews_with_stats(client, trip, auth_headers):
    _, _, customer, car, booking = trip
    _create(client, auth_headers(customer), booking, rating=4, serviceRating=2)

    r = client.get("/api/reviews", params={"carId": car.id})
    assert r.status_code == 200
    data = r.json()
    assert len(data["reviews"]) == 1
    assert data["pagination"] == {"total": 1, "limit": 10, "offset": 0, "hasMore": False}
    assert data["stats"]["averageRating"] == 4
    assert data["stats"]["averageServiceRating"] == 2
    assert data["stats"]["averageValueRating"] == 0

    assert client.get("/api/reviews", params={"carId": car.id + 1}).json()["reviews"] == []


def test_update_review_permissions(client, trip, make_agency, make_user, auth_headers):
    _, owner, customer, _, booking = trip
    review_id = _create(client, auth_headers(customer), booking).json()["review"]["id"]
    _, stranger_owner = make_agency(name="Elsewhere")
    admin = make_user(role="admin")

    r = client.put(f"/api/reviews/{review_id}", headers=auth_headers(customer), json={"rating": 9, "comment": "Changed"})
    assert r.status_code == 200
    assert r.json()["review"]["rating"] == 5

    assert client.put(f"/api/reviews/{review_id}", headers=auth_headers(customer), json={"agencyResponse": "x"}).status_code == 403
    assert client.put(f"/api/reviews/{review_id}", headers=auth_headers(owner), json={"rating": 1}).status_code == 403
    assert client.put(f"/api/reviews/{review_id}", headers=auth_headers(stranger_owner), json={"agencyResponse": "x"}).status_code == 403

    r = client.put(f"/api/reviews/{review_id}", headers=auth_headers(owner), json={"agencyResponse": "Thank you!"})
    assert r.status_code == 200
    assert r.json()["review"]["agencyResponse"] == "Thank you!"
    assert r.json()["review"]["agencyResponseDate"]

    r = client.put(f"/api/reviews/{review_id}", headers=auth_headers(admin), json={"isFeatured": True})
    assert r.json()["review"]["isFeatured"] is True


def test_delete_review_permissions(client, db, trip, make_user, auth_headers):
    _, owner, customer, _, booking = trip
    review_id = _create(client, auth_headers(customer), booking).json()["review"]["id"]

    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(owner)).status_code == 403
    assert client.delete(f"/api/reviews/{review_id}", headers=auth_headers(make_user())).status_code == 403

    r = client.delete(f"/api/reviews/{review_id}", headers=auth_headers(customer))
    assert r.status_code == 200
    assert db.query(Review).count() == 0
    assert client.get(f"/api/reviews/{review_id}").status_code == 404
