from datetime import date

import pytest

from carmarket.models import Booking, Car, SupportTicket


def test_list_cars_only_active_with_filters(client, db, make_agency, make_car):
    agency, _ = make_agency()
    other, _ = make_agency(name="Rabat Rent", city="Rabat")
    make_car(agency, category="suv")
    make_car(agency, category="economy", status="maintenance")
    make_car(other, category="economy")
    hidden = make_car(agency)
    hidden.is_active = False
    db.commit()

    r = client.get("/api/cars")
    assert r.status_code == 200
    assert isinstance(r.json(), list)

    r = client.get("/api/cars", params={"city": "rabat"})
    assert [c["agency"]["name"] for c in r.json()] == ["Rabat Rent"]

    r = client.get("/api/cars", params={"category": "economy", "available": "true"})
    assert len(r.json()) == 1
    assert r.json()[0]["location"] == "Rabat"


def test_create_car_requires_approved_agency(client, make_agency, make_user, auth_headers):
    payload = {"make": "Renault", "model": "Clio", "year": 2023, "category": "compact", "pricePerDay": 280}

    customer = make_user()
    r = client.post("/api/cars", json=payload, headers=auth_headers(customer))
    assert r.status_code == 403

    _, pending_owner = make_agency(status="pending", name="Slow Agency")
    r = client.post("/api/cars", json=payload, headers=auth_headers(pending_owner))
    assert r.status_code == 403
    assert r.json() == {"error": "Agency not approved", "agencyStatus": "pending"}

    agency, owner = make_agency()
    r = client.post("/api/cars", json=payload, headers=auth_headers(owner))
    assert r.status_code == 201
    car = r.json()["car"]
    assert car["agencyId"] == agency.id
    assert car["location"] == "Casablanca"
    assert car["status"] == "available"


@pytest.mark.parametrize("field", ["make", "model", "year", "category", "pricePerDay"])
def test_create_car_missing_field(client, make_agency, auth_headers, field):
    _, owner = make_agency()
    payload = {"make": "Renault", "model": "Clio", "year": 2023, "category": "compact", "pricePerDay": 280}
    payload.pop(field)
    r = client.post("/api/cars", json=payload, headers=auth_headers(owner))
    assert r.status_code == 400
    assert r.json() == {"error": f"Missing required field: {field}"}


def test_create_car_rejects_unknown_category(client, make_agency, auth_headers):
    _, owner = make_agency()
    r = client.post("/api/cars", headers=auth_headers(owner), json={
        "make": "Renault", "model": "Clio", "year": 2023, "category": "spaceship", "pricePerDay": 280,
    })
    assert r.status_code == 400


@pytest.mark.parametrize("field, value, error", [
    ("images", 5, "images must be a list"),
    ("features", "air conditioning", "features must be a list"),
    ("specifications", ["4 doors"], "specifications must be an object"),
    ("make", {"brand": "Renault"}, "Invalid make"),
    ("pricePerDay", "NaN", "Invalid pricePerDay"),
])
def test_create_car_rejects_wrong_json_types(client, db, make_agency, auth_headers, field, value, error):
    _, owner = make_agency()
    payload = {"make": "Renault", "model": "Clio", "year": 2023, "category": "compact", "pricePerDay": 280}
    payload[field] = value
    r = client.post("/api/cars", json=payload, headers=auth_headers(owner))
    assert r.status_code == 400
    assert r.json() == {"error": error}
    assert db.query(Car).count() == 0


def test_update_car_keeps_lists_and_specifications(client, make_agency, make_car, auth_headers):
    agency, owner = make_agency()
    car = make_car(agency)
    r = client.put(f"/api/cars/{car.id}", headers=auth_headers(owner), json={
        "images": ["https://img.example/1.jpg"], "features": ["GPS"], "specifications": {"doors": 4},
    })
    assert r.status_code == 200
    data = r.json()["car"]
    assert data["images"] == ["https://img.example/1.jpg"]
    assert data["features"] == ["GPS"]
    assert data["specifications"] == {"doors": 4}

    assert client.put(f"/api/cars/{car.id}", headers=auth_headers(owner), json={"images": {"a": 1}}).status_code == 400


def test_get_car_includes_reviews_and_revenue(client, make_agency, make_car, make_booking):
    agency, _ = make_agency()
    car = make_car(agency)
    make_booking(car, status="completed", total=500)
    make_booking(car, status="cancelled", total=900, start_in_days=10)

    r = client.get(f"/api/cars/{car.id}")
    assert r.status_code == 200
    data = r.json()
    assert data["totalBookings"] == 2
    assert data["totalRevenue"] == 500
    assert data["reviews"] == []
    assert data["agency"]["city"] == "Casablanca"

    assert client.get("/api/cars/9999").status_code == 404


def test_update_car_only_by_owner_agency(client, make_agency, make_car, auth_headers):
    agency, owner = make_agency()
    _, other_owner = make_agency(name="Other Agency")
    car = make_car(agency)

    r = client.put(f"/api/cars/{car.id}", json={"pricePerDay": 450}, headers=auth_headers(other_owner))
    assert r.status_code == 404
    assert r.json() == {"error": "Car not found or access denied"}

    r = client.put(f"/api/cars/{car.id}", json={"pricePerDay": 450, "status": "maintenance"}, headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["car"]["pricePerDay"] == 450
    assert r.json()["car"]["status"] == "maintenance"


@pytest.mark.parametrize("status", ["pending", "confirmed", "in_progress"])
def test_delete_car_blocked_by_open_booking(client, db, make_agency, make_car, make_booking, auth_headers, status):
    agency, owner = make_agency()
    car = make_car(agency)
    make_booking(car, status=status)

    r = client.delete(f"/api/cars/{car.id}", headers=auth_headers(owner))
    assert r.status_code == 400
    db.expire_all()
    assert db.get(Car, car.id) is not None


def test_delete_car_with_only_finished_bookings(client, db, make_agency, make_car, make_booking, make_user, auth_headers):
    agency, owner = make_agency()
    car = make_car(agency)
    customer = make_user()
    done = make_booking(car, customer=customer, status="completed")
    ticket = SupportTicket(
        ticket_number="VEN-TEST-000001", user_id=customer.id, category="booking_issue",
        subject="Question", description="About my trip", related_booking_id=done.id,
    )
    db.add(ticket)
    db.commit()
    car_id, booking_id, ticket_id = car.id, done.id, ticket.id

    r = client.delete(f"/api/cars/{car_id}", headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json() == {"success": True}

    db.expire_all()
    assert db.get(Car, car_id) is None
    assert db.get(Booking, booking_id) is None
    assert db.get(SupportTicket, ticket_id).related_booking_id is None


def test_availability_marks_booked_days(client, make_agency, make_car, make_booking):
    agency, _ = make_agency()
    car = make_car(agency)
    booking = make_booking(car, start_in_days=1, days=2)
    make_booking(car, start_in_days=1, days=1, status="cancelled")

    month = booking.pickup_datetime.strftime("%Y-%m")
    r = client.get(f"/api/cars/{car.id}/availability", params={"month": month})
    assert r.status_code == 200
    data = r.json()
    assert data["month"] == month
    assert [x["status"] for x in data["ranges"]] == ["pending"]

    booked = {d["date"] for d in data["days"] if d["booked"]}
    assert booking.pickup_datetime.date().isoformat() in booked
    assert all(d["date"].startswith(month) for d in data["days"])


def test_availability_rejects_bad_month(client, make_agency, make_car):
    agency, _ = make_agency()
    car = make_car(agency)
    r = client.get(f"/api/cars/{car.id}/availability", params={"month": "June"})
    assert r.status_code == 400
    assert date.today().strftime("%Y-%m") == client.get(f"/api/cars/{car.id}/availability").json()["month"]
