from decimal import Decimal

from inkflow.core.enums import BookingStatus
from inkflow.models.booking import Booking
from tests.factories.booking_builders import CRON_HEADERS, at, make_booking, next_weekday

MONDAY = next_weekday(0)


def _payload(provider, hour=11, **overrides):
    payload = {
        "provider_id": provider.id,
        "client_email": "client@example.com",
        "client_name": "Sam Dupont",
        "client_phone": "+33611111111",
        "start_time": at(MONDAY, hour).isoformat(),
        "duration_minutes": 120,
        "kind": "session",
        "price": "200.00",
        "description": "Fine line <b>peony</b> on the forearm",
        "zone": "forearm",
    }
    payload.update(overrides)
    return payload


class TestCreateBooking:
    def test_unonboarded_provider_gets_no_payment_link(self, client, db, provider):
        response = client.post("/api/v1/bookings", json=_payload(provider))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending_payment"
        assert body["payment"] is None
        booking = db.get(Booking, body["booking_id"])
        assert booking.description == "Fine line peony on the forearm"

    def test_onboarded_provider_gets_deposit_link(self, client, onboarded_provider):
        response = client.post("/api/v1/bookings", json=_payload(onboarded_provider))

        assert response.status_code == 201
        body = response.json()
        payment = body["payment"]
        assert payment["payment_intent_id"] == f"mock_pi_{body['booking_id']}_deposit_6000"
        assert payment["client_secret"].endswith("_secret")
        assert Decimal(payment["amount"]) == Decimal("60.00")

    def test_zero_deposit_opens_no_payment(self, client, onboarded_provider):
        response = client.post(
            "/api/v1/bookings", json=_payload(onboarded_provider, deposit_amount="0")
        )

        assert response.status_code == 201
        assert response.json()["payment"] is None

    def test_validation_failure_is_a_problem_document(self, client, provider):
        response = client.post(
            "/api/v1/bookings",
            json=_payload(provider, start_time="2001-01-01T10:00:00", duration_minutes=10),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "BOOKING_VALIDATION_FAILED"
        assert body["title"] == "Bad Request"
        assert body["instance"] == "/api/v1/bookings"
        assert body["details"]["first_error"]["field"] == "start_time"
        assert "future" in body["detail"]
        assert {e["field"] for e in body["errors"]} == {"start_time", "duration_minutes"}

    def test_unknown_field_is_rejected(self, client, provider):
        response = client.post("/api/v1/bookings", json=_payload(provider, status="confirmed"))

        assert response.status_code == 400
        assert response.json()["detail"] == "Unexpected field: status"

    def test_overlap_is_a_conflict(self, client, db, provider, booking_client):
        make_booking(db, provider, booking_client, at(MONDAY, 12))

        response = client.post("/api/v1/bookings", json=_payload(provider, hour=11))

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "SLOT_UNAVAILABLE"
        assert body["details"]["conflicting_start"] == at(MONDAY, 11, 45).isoformat()

    def test_unknown_provider_is_not_found(self, client, provider):
        payload = _payload(provider, provider_id="01HF4G12ABCDEF3456789XYZAB")

        response = client.post("/api/v1/bookings", json=payload)

        assert response.status_code == 404
        assert response.json()["code"] == "PROVIDER_NOT_FOUND"


class TestLifecycleRoutes:
    def test_cancel_then_replay(self, client, db, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        response = client.post(
            f"/api/v1/bookings/{booking.id}/cancel", json={"reason": "Feeling unwell"}
        )
        assert response.status_code == 200
        assert response.json() == {"booking_id": booking.id, "status": "cancelled"}

        replay = client.post(f"/api/v1/bookings/{booking.id}/cancel")
        assert replay.status_code == 409
        assert replay.json()["code"] == "ALREADY_CANCELLED"

    def test_complete_pending_booking_is_unprocessable(
        self, client, db, provider, booking_client
    ):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )

        response = client.post(f"/api/v1/bookings/{booking.id}/complete")

        assert response.status_code == 422
        assert response.json()["code"] == "NOT_CONFIRMED_FOR_COMPLETION"

    def test_complete_and_invoice(self, client, db, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        completed = client.post(f"/api/v1/bookings/{booking.id}/complete")
        first = client.post(f"/api/v1/bookings/{booking.id}/invoice")
        second = client.post(f"/api/v1/bookings/{booking.id}/invoice")

        assert completed.json()["status"] == "completed"
        assert first.status_code == 200
        assert first.json() == second.json()

    def test_invoice_before_completion(self, client, db, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        response = client.post(f"/api/v1/bookings/{booking.id}/invoice")

        assert response.status_code == 422
        assert response.json()["code"] == "BOOKING_NOT_COMPLETED"

    def test_malformed_booking_id(self, client):
        response = client.post("/api/v1/bookings/not-a-ulid/cancel")

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_unknown_booking(self, client):
        response = client.post("/api/v1/bookings/01HF4G12ABCDEF3456789XYZAB/cancel")

        assert response.status_code == 404
        assert response.json()["code"] == "BOOKING_NOT_FOUND"


def test_calendar_export(client, db, provider, booking_client):
    booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

    response = client.get(f"/api/v1/bookings/{booking.id}/calendar.ics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/calendar")
    assert f'filename="booking-{booking.id}.ics"' in response.headers["content-disposition"]
    assert "BEGIN:VEVENT" in response.text


def test_balance_request(client, db, onboarded_provider, booking_client):
    booking = make_booking(db, onboarded_provider, booking_client, at(MONDAY, 11))

    response = client.post(f"/api/v1/bookings/{booking.id}/balance-request")

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["remaining"]) == Decimal("200.00")
    assert body["payment_intent_id"].startswith(f"mock_pi_{booking.id}_balance")


def test_repeated_balance_request_returns_the_open_payment(
    client, db, onboarded_provider, booking_client
):
    booking = make_booking(db, onboarded_provider, booking_client, at(MONDAY, 11))

    first = client.post(f"/api/v1/bookings/{booking.id}/balance-request")
    second = client.post(f"/api/v1/bookings/{booking.id}/balance-request")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["payment_id"] == first.json()["payment_id"]
    assert second.json()["payment_intent_id"] == first.json()["payment_intent_id"]


def test_balance_request_without_gateway_account(client, db, provider, booking_client):
    booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

    response = client.post(f"/api/v1/bookings/{booking.id}/balance-request")

    assert response.status_code == 422
    assert response.json()["code"] == "GATEWAY_NOT_CONFIGURED"


class TestManualPaymentRoute:
    def test_requires_bearer_token(self, client, db, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))
        body = {"amount": "60.00", "kind": "deposit", "method": "cash"}

        missing = client.post(f"/api/v1/bookings/{booking.id}/payments/manual", json=body)
        wrong = client.post(
            f"/api/v1/bookings/{booking.id}/payments/manual",
            json=body,
            headers={"Authorization": "Bearer nope"},
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert missing.json()["code"] == "UNAUTHORIZED"

    def test_cash_deposit_confirms(self, client, db, provider, booking_client):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )

        response = client.post(
            f"/api/v1/bookings/{booking.id}/payments/manual",
            json={"amount": "60.00", "kind": "deposit", "method": "cash"},
            headers=CRON_HEADERS,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "settled"
        assert Decimal(body["remaining"]) == Decimal("140.00")
        db.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED

    def test_gateway_method_is_rejected(self, client, db, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        response = client.post(
            f"/api/v1/bookings/{booking.id}/payments/manual",
            json={"amount": "60.00", "kind": "deposit", "method": "gateway"},
            headers=CRON_HEADERS,
        )

        assert response.status_code == 422
