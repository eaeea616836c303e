from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from inkflow.core.enums import BookingStatus, NotificationTemplate, TransitionFailure
from inkflow.core.exceptions import (
    EntityNotFoundException,
    InvalidStateTransitionException,
    RepositoryException,
    SlotUnavailableException,
)
from inkflow.models.client import Client
from inkflow.services.booking_validator import validate_booking_input
from inkflow.services.reservation_service import (
    GENERIC_CONFLICT_MESSAGE,
    OVERLAP_CONFLICT_MESSAGE,
    ReservationService,
)
from tests.factories.booking_builders import at, enqueued_templates, make_booking, next_weekday

MONDAY = next_weekday(0)
NOW = at(MONDAY, 8)


@pytest.fixture
def service(db):
    return ReservationService(db)


def _request(provider, start, **overrides):
    payload = {
        "provider_id": provider.id,
        "client_email": "client@example.com",
        "client_name": "Sam Dupont",
        "start_time": start.isoformat(),
        "duration_minutes": 60,
        "kind": "session",
        "price": "200.00",
    }
    payload.update(overrides)
    return validate_booking_input(payload, now=NOW)


class TestCreate:
    def test_creates_pending_booking_with_snapshot(self, db, service, provider, enqueued):
        booking = service.create(_request(provider, at(MONDAY, 11)), now=NOW)

        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.end_time == at(MONDAY, 12)
        assert (booking.prep_minutes, booking.cleanup_minutes, booking.buffer_minutes) == (
            15,
            15,
            0,
        )
        assert booking.expanded_range == (at(MONDAY, 10, 45), at(MONDAY, 12, 15))
        assert booking.deposit_paid is False

    def test_default_deposit_uses_provider_percentage(self, db, service, provider):
        booking = service.create(_request(provider, at(MONDAY, 11)), now=NOW)
        assert booking.deposit_amount == Decimal("60.00")

        provider.deposit_percentage = 25
        db.commit()
        other = service.create(
            _request(provider, at(MONDAY, 15), price="99.99", client_email="b@example.com"),
            now=NOW,
        )
        assert other.deposit_amount == Decimal("25.00")

    def test_explicit_deposit_is_kept(self, db, service, provider):
        booking = service.create(
            _request(provider, at(MONDAY, 11), deposit_amount="0"), now=NOW
        )
        assert booking.deposit_amount == Decimal("0")

    def test_client_is_created_once_per_email(self, db, service, provider):
        service.create(_request(provider, at(MONDAY, 10)), now=NOW)
        service.create(
            _request(provider, at(MONDAY, 14), client_email="Client@Example.com"), now=NOW
        )

        assert db.query(Client).count() == 1

    def test_existing_client_id_must_exist(self, db, service, provider):
        with pytest.raises(EntityNotFoundException) as exc_info:
            service.create(
                _request(provider, at(MONDAY, 11)),
                client_id="01HF4G12ABCDEF3456789XYZAB",
                now=NOW,
            )
        assert exc_info.value.code == "CLIENT_NOT_FOUND"

    def test_unknown_provider(self, db, service, provider):
        request = _request(provider, at(MONDAY, 11))
        request = request.model_copy(update={"provider_id": "01HF4G12ABCDEF3456789XYZAB"})

        with pytest.raises(EntityNotFoundException) as exc_info:
            service.create(request, now=NOW)
        assert exc_info.value.code == "PROVIDER_NOT_FOUND"

    def test_notifications_are_enqueued_after_commit(self, db, service, provider, enqueued):
        booking = service.create(_request(provider, at(MONDAY, 11)), now=NOW)

        assert enqueued_templates(enqueued) == [
            NotificationTemplate.PROVIDER_BOOKING_ALERT.value,
            NotificationTemplate.CLIENT_BOOKING_RECEIVED.value,
        ]
        assert enqueued.call_args.kwargs["args"][1] == booking.id
        assert enqueued.call_args.kwargs["queue"] == "notifications"

    def test_enqueue_failure_does_not_fail_the_booking(self, db, service, provider, enqueued):
        enqueued.side_effect = ConnectionError("broker down")

        booking = service.create(_request(provider, at(MONDAY, 11)), now=NOW)

        db.expire_all()
        assert booking.status == BookingStatus.PENDING_PAYMENT

    def test_overlap_is_rejected_with_conflicting_range(
        self, db, service, provider, booking_client, enqueued
    ):
        existing = make_booking(db, provider, booking_client, at(MONDAY, 11))

        with pytest.raises(SlotUnavailableException) as exc_info:
            service.create(_request(provider, at(MONDAY, 12)), now=NOW)

        exc = exc_info.value
        assert exc.status_code == 409
        assert exc.reason == OVERLAP_CONFLICT_MESSAGE
        assert (exc.conflicting_start, exc.conflicting_end) == existing.expanded_range
        assert enqueued.call_count == 0

    def test_adjacent_expanded_ranges_are_accepted(self, db, service, provider, booking_client):
        make_booking(db, provider, booking_client, at(MONDAY, 11))

        # Existing occupies [10:45, 12:15); the new one expands to [12:15, 13:45)
        booking = service.create(_request(provider, at(MONDAY, 12, 30)), now=NOW)
        assert booking.occupied_start == at(MONDAY, 12, 15)

    def test_outside_hours_absence_and_past_are_rejected(
        self, db, service, provider, add_absence
    ):
        with pytest.raises(SlotUnavailableException, match="outside working hours"):
            service.create(_request(provider, at(MONDAY, 17, 30)), now=NOW)

        with pytest.raises(SlotUnavailableException, match="not in the future"):
            service.create(_request(provider, at(MONDAY, 10)), now=at(MONDAY, 10))

        add_absence(provider, MONDAY, "Convention")
        with pytest.raises(SlotUnavailableException, match="Convention"):
            service.create(_request(provider, at(MONDAY, 11)), now=NOW)

    def test_second_booking_for_same_slot_fails(self, db, service, provider):
        service.create(_request(provider, at(MONDAY, 11)), now=NOW)

        with pytest.raises(SlotUnavailableException):
            service.create(
                _request(provider, at(MONDAY, 11), client_email="other@example.com"), now=NOW
            )

    def test_exclusion_violation_maps_to_slot_unavailable(self, db, service, provider):
        error = RepositoryException(
            "Integrity constraint violated: conflicting key value violates exclusion "
            'constraint "bookings_no_overlap_per_provider"'
        )
        with patch.object(service.repository, "create", side_effect=error):
            with pytest.raises(SlotUnavailableException) as exc_info:
                service.create(_request(provider, at(MONDAY, 11)), now=NOW)

        assert exc_info.value.reason == GENERIC_CONFLICT_MESSAGE


class TestIntegrityConflictMessage:
    def test_constraint_name_from_diag(self):
        diag = SimpleNamespace(constraint_name="bookings_no_overlap_per_provider")
        orig = SimpleNamespace(diag=diag)
        error = IntegrityError("INSERT", {}, orig)

        message, is_overlap = ReservationService._resolve_integrity_conflict_message(error)
        assert (message, is_overlap) == (OVERLAP_CONFLICT_MESSAGE, True)

    def test_constraint_name_from_message(self):
        orig = Exception('violates exclusion constraint "bookings_no_overlap_per_provider"')
        error = IntegrityError("INSERT", {}, orig)
        assert ReservationService._resolve_integrity_conflict_message(error)[1] is True

    def test_other_constraints_are_generic(self):
        error = IntegrityError("INSERT", {}, Exception("check_price_positive"))
        assert ReservationService._resolve_integrity_conflict_message(error) == (
            GENERIC_CONFLICT_MESSAGE,
            False,
        )


class TestTransitions:
    def test_confirm_pending_booking(self, db, service, provider, booking_client, enqueued):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )

        confirmed = service.confirm(booking.id)

        assert confirmed.status == BookingStatus.CONFIRMED
        assert confirmed.deposit_paid is True
        assert confirmed.confirmed_at is not None
        assert enqueued_templates(enqueued) == [NotificationTemplate.CLIENT_CONFIRMATION.value]

    def test_confirm_replay_does_not_mutate(self, db, service, provider, booking_client, enqueued):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )
        service.confirm(booking.id)
        confirmed_at = booking.confirmed_at
        enqueued.reset_mock()

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.confirm(booking.id)

        assert exc_info.value.kind == TransitionFailure.ALREADY_CONFIRMED
        assert exc_info.value.is_replay
        assert exc_info.value.status_code == 409
        db.refresh(booking)
        assert booking.confirmed_at == confirmed_at
        assert enqueued.call_count == 0

    def test_confirm_cancelled_booking_is_refused(self, db, service, provider, booking_client):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.CANCELLED
        )

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.confirm(booking.id)
        assert exc_info.value.kind == TransitionFailure.ALREADY_CANCELLED

    def test_cancel_releases_the_slot(self, db, service, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        cancelled = service.cancel(booking.id, reason="Client moved away")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "Client moved away"
        assert cancelled.cancelled_at is not None
        replacement = service.create(
            _request(provider, at(MONDAY, 11), client_email="next@example.com"), now=NOW
        )
        assert replacement.start_time == at(MONDAY, 11)

    def test_cancel_replay_and_completed(self, db, service, provider, booking_client):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))
        service.cancel(booking.id)

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.cancel(booking.id)
        assert exc_info.value.kind == TransitionFailure.ALREADY_CANCELLED

        done = make_booking(
            db, provider, booking_client, at(MONDAY, 15), status=BookingStatus.COMPLETED
        )
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.cancel(done.id)
        assert exc_info.value.kind == TransitionFailure.ALREADY_COMPLETED

    def test_complete_confirmed_booking(self, db, service, provider, booking_client, enqueued):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))

        completed = service.complete(booking.id)

        assert completed.status == BookingStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.review_requested_at is not None
        assert enqueued_templates(enqueued) == [NotificationTemplate.REVIEW_REQUEST.value]

    def test_complete_pending_is_unprocessable(self, db, service, provider, booking_client):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.complete(booking.id)

        assert exc_info.value.kind == TransitionFailure.NOT_CONFIRMED_FOR_COMPLETION
        assert exc_info.value.status_code == 422
        assert not exc_info.value.is_replay

    def test_complete_replay(self, db, service, provider, booking_client, enqueued):
        booking = make_booking(db, provider, booking_client, at(MONDAY, 11))
        service.complete(booking.id)
        enqueued.reset_mock()

        with pytest.raises(InvalidStateTransitionException) as exc_info:
            service.complete(booking.id)

        assert exc_info.value.kind == TransitionFailure.ALREADY_COMPLETED
        assert enqueued.call_count == 0

    def test_unknown_booking(self, db, service):
        with pytest.raises(EntityNotFoundException):
            service.cancel("01HF4G12ABCDEF3456789XYZAB")


def test_get_booking_loads_relationships(db, service, provider, booking_client):
    booking = make_booking(db, provider, booking_client, at(MONDAY, 12))

    loaded = service.get_booking(booking.id)

    assert loaded.provider.id == provider.id
    assert loaded.client.email == "client@example.com"
