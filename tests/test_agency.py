from carmarket.agency import get_agency_stats, update_booking_status
from carmarket.auth import verify_token
from carmarket.models import Agency, Booking, Review, User


AGENCY_FORM = {
    "name": "Marrakech Wheels",
    "email": "Hello@MarrakechWheels.test",
    "address": "12 Avenue Mohammed V",
    "city": "Marrakech",
    "description": "Family run since 1998",
}


def test_register_agency(client, db, make_user, auth_headers, outbox):
    user = make_user()
    r = client.post("/api/agencies/register", json=AGENCY_FORM, headers=auth_headers(user))
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True

    db.expire_all()
    agency = db.get(Agency, data["agencyId"])
    assert agency.status == "pending"
    assert agency.slug == "marrakech-wheels"
    assert agency.email == "hello@marrakechwheels.test"
    assert db.get(User, user.id).role == "agency_owner"

    principal = verify_token(data["token"])
    assert principal.role == "agency_owner"
    assert principal.agency_id == agency.id

    # Platform admin is told about the new application
    assert outbox[-1]["to"] == ["ops@carmarket.test"]
    assert "Marrakech Wheels" in outbox[-1]["subject"]


def test_register_agency_validation(client, make_user, make_agency, auth_headers):
    user = make_user()
    r = client.post("/api/agencies/register", json=dict(AGENCY_FORM, city=""), headers=auth_headers(user))
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required field: city"}

    make_agency(name="Marrakech Wheels")
    r = client.post("/api/agencies/register", json=AGENCY_FORM, headers=auth_headers(user))
    assert r.status_code == 400

    _, owner = make_agency(name="Already Owner")
    r = client.post("/api/agencies/register", json=dict(AGENCY_FORM, name="Second"), headers=auth_headers(owner))
    assert r.status_code == 400


def test_dashboard_requires_approved_agency(client, make_user, make_agency, auth_headers):
    r = client.get("/api/agency/dashboard", headers=auth_headers(make_user()))
    assert r.status_code == 403

    _, owner = make_agency(status="rejected", name="Nope")
    r = client.get("/api/agency/dashboard", headers=auth_headers(owner))
    assert r.status_code == 403
    assert r.json()["agencyStatus"] == "rejected"


def test_agency_stats(db, make_agency, make_car, make_booking, make_user):
    agency, _ = make_agency()
    other, _ = make_agency(name="Other")
    car = make_car(agency)
    make_car(agency)
    make_car(other)
    customer = make_user()

    make_booking(car, status="pending", total=100)
    make_booking(car, status="confirmed", total=200, start_in_days=10)
    done = make_booking(car, customer=customer, status="completed", total=300, start_in_days=20)
    make_booking(car, status="cancelled", total=999, start_in_days=30)
    db.add(Review(booking_id=done.id, customer_id=customer.id, agency_id=agency.id, car_id=car.id, rating=4))
    db.commit()

    stats = get_agency_stats(db, agency.id)
    assert stats == {
        "totalCars": 2,
        "activeBookings": 1,
        "completedBookings": 1,
        "pendingBookings": 1,
        "totalRevenue": 500,
        "averageRating": 4.0,
    }


def test_dashboard_sections(client, make_agency, make_car, make_booking, make_user, auth_headers):
    agency, owner = make_agency()
    car = make_car(agency)
    customer = make_user(name="Registered Name", email="registered@example.com")
    make_booking(car, customer=customer, customer_name="Typed Name")
    headers = auth_headers(owner)

    r = client.get("/api/agency/dashboard", headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert data["agency"]["id"] == agency.id
    assert data["stats"]["totalCars"] == 1
    assert data["cars"][0]["totalBookings"] == 1
    booking = data["recentBookings"][0]
    # The account holder wins over the contact typed into the form
    assert booking["customerName"] == "Registered Name"
    assert booking["car"]["make"] == "Dacia"

    assert set(client.get("/api/agency/dashboard?type=stats", headers=headers).json()) == {"stats"}
    assert len(client.get("/api/agency/dashboard?type=bookings&limit=5", headers=headers).json()["bookings"]) == 1
    assert client.get("/api/agency/dashboard?type=bogus", headers=headers).status_code == 400


def test_update_booking_status_scoped_to_agency(db, make_agency, make_car, make_booking):
    agency, _ = make_agency()
    other, _ = make_agency(name="Other")
    booking = make_booking(make_car(agency))

    assert update_booking_status(db, booking.id, other.id, "confirmed") == (False, "Booking not found or access denied")
    assert update_booking_status(db, booking.id, agency.id, "teleported") == (False, "Invalid status")
    assert update_booking_status(db, booking.id, agency.id, "completed") == (True, None)
    # No transition table: any known status can follow any other
    assert update_booking_status(db, booking.id, agency.id, "pending") == (True, None)


def test_dashboard_status_update_notifies_customer(client, db, make_agency, make_car, make_booking, make_user, auth_headers, outbox):
    agency, owner = make_agency()
    customer = make_user(email="rider@example.com")
    booking = make_booking(make_car(agency), customer=customer)

    r = client.put("/api/agency/dashboard", headers=auth_headers(owner), json={"bookingId": booking.id, "status": "confirmed"})
    assert r.status_code == 200
    assert r.json()["booking"]["status"] == "confirmed"
    assert outbox[-1]["to"] == ["rider@example.com"]

    db.expire_all()
    assert db.get(Booking, booking.id).status == "confirmed"

    r = client.put("/api/agency/dashboard", headers=auth_headers(owner), json={"bookingId": booking.id})
    assert r.status_code == 400
