import random
from datetime import timedelta

import pytest

from app.errors import InvariantViolation, NotFoundError, ValidationError
from app.extensions import db
from app.models.book_item import ItemStatus
from app.models.borrow_request import BorrowRequest, BorrowRequestStatus
from app.repositories.book_repo import BookRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo
from app.services.admission_service import AdmissionService, Decision
from app.services.borrow_request_service import BorrowRequestService


def _request(user, book, period, quantity=1):
    start, end = period
    return BorrowRequestService.create_borrow_request(user.id, book.id, quantity, start, end)


def _assert_supply_invariant(book_id):
    assert BorrowRequestRepo.reserved_quantity(book_id) <= BookRepo.available_item_count(book_id)


def test_available_count_ignores_other_states_and_deleted_items(make_book):
    book = make_book(copies=3)
    items = book.items.all()
    items[0].status = ItemStatus.MAINTENANCE
    items[1].is_deleted = True
    db.session.commit()

    assert BookRepo.available_item_count(book.id) == 1


def test_reserved_quantity_counts_only_approved(make_user, make_book, period):
    book = make_book(copies=2)
    _request(make_user(), book, period, quantity=2)
    _request(make_user(), book, period, quantity=1)  # queued

    assert BorrowRequestRepo.reserved_quantity(book.id) == 2


def test_new_request_approved_when_copies_free(make_user, make_book, period):
    # two copies, nothing reserved
    book = make_book(copies=2)

    result = _request(make_user(), book, period)

    assert result["status"] == BorrowRequestStatus.APPROVED
    assert result["queue_position"] is None
    assert result["borrow_request"].approved_at is not None


def test_requests_queue_when_no_copy_available(make_user, make_book, period):
    book = make_book(copies=0)

    first = _request(make_user(), book, period)
    second = _request(make_user(), book, period)

    assert first["status"] == BorrowRequestStatus.PENDING
    assert first["queue_position"] == 1
    assert second["status"] == BorrowRequestStatus.PENDING
    assert second["queue_position"] == 2


def test_quantity_larger_than_remaining_is_queued(make_user, make_book, period):
    book = make_book(copies=2)
    _request(make_user(), book, period, quantity=1)

    result = _request(make_user(), book, period, quantity=2)

    assert result["status"] == BorrowRequestStatus.PENDING


def test_decider_queues_instead_of_failing_when_already_oversold(make_user, make_book, period):
    book = make_book(copies=1)
    _request(make_user(), book, period)
    # copy disappears from the shelf after the promise was made
    book.items.first().status = ItemStatus.LOST
    db.session.commit()

    assert AdmissionService.remaining(book.id) == -1
    assert AdmissionService.decide(book.id, 1) == Decision.QUEUE


def test_second_active_request_for_same_book_is_rejected(make_user, make_book, period):
    user = make_user()
    book = make_book(copies=0)
    _request(user, book, period)

    with pytest.raises(ValidationError, match="already have an active borrow request"):
        _request(user, book, period)

    assert BorrowRequest.query.count() == 1


def test_new_request_allowed_after_previous_one_ended(make_user, make_book, period):
    user = make_user()
    book = make_book(copies=0)
    first = _request(user, book, period)
    BorrowRequestService.cancel_request(first["borrow_request"].id, user.id)

    second = _request(user, book, period)

    assert second["status"] == BorrowRequestStatus.PENDING


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity(make_user, make_book, period, quantity):
    with pytest.raises(ValidationError, match="Quantity"):
        _request(make_user(), make_book(), period, quantity=quantity)


def test_unknown_or_deleted_book(make_user, make_book, period):
    user = make_user()
    start, end = period
    with pytest.raises(NotFoundError):
        BorrowRequestService.create_borrow_request(user.id, 999, 1, start, end)

    book = make_book()
    book.is_deleted = True
    db.session.commit()
    with pytest.raises(NotFoundError):
        _request(user, book, period)


def test_date_rules(make_user, make_book, today):
    user = make_user()
    book = make_book()

    with pytest.raises(ValidationError, match="past"):
        _request(user, book, (today - timedelta(days=1), today + timedelta(days=5)))
    with pytest.raises(ValidationError, match="after start"):
        _request(user, book, (today + timedelta(days=2), today + timedelta(days=2)))
    with pytest.raises(ValidationError, match="30 days"):
        _request(user, book, (today, today + timedelta(days=31)))

    # exactly 30 days starting today is fine
    result = _request(user, book, (today, today + timedelta(days=30)))
    assert result["status"] == BorrowRequestStatus.APPROVED


def test_oversell_is_rolled_back_and_reported(make_user, make_book, period, monkeypatch):
    book = make_book(copies=0)
    # a decider that read stale counters
    monkeypatch.setattr(AdmissionService, "decide", staticmethod(lambda book_id, qty: Decision.APPROVE))

    with pytest.raises(InvariantViolation):
        _request(make_user(), book, period)

    assert BorrowRequest.query.count() == 0


@pytest.mark.parametrize("seed", range(5))
def test_supply_never_oversold_under_any_arrival_order(make_user, make_book, period, seed):
    rng = random.Random(seed)
    copies = 3
    book = make_book(copies=copies)
    arrivals = [(make_user(), rng.choice([1, 1, 2])) for _ in range(8)]
    rng.shuffle(arrivals)

    for user, quantity in arrivals:
        _request(user, book, period, quantity=quantity)
        _assert_supply_invariant(book.id)

    approved = BorrowRequest.query.filter_by(status=BorrowRequestStatus.APPROVED).all()
    assert sum(r.item.quantity for r in approved) <= copies

    # cancellations in random order keep refilling from the queue without overselling
    active = BorrowRequest.query.filter(BorrowRequest.status.in_(BorrowRequestStatus.ACTIVE)).all()
    rng.shuffle(active)
    for borrow_request in active[:4]:
        db.session.refresh(borrow_request)
        if borrow_request.status in BorrowRequestStatus.ACTIVE:
            BorrowRequestService.cancel_request(borrow_request.id, borrow_request.user_id)
        _assert_supply_invariant(book.id)
