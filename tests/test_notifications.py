from datetime import timedelta

from app.extensions import db, mail
from app.models.borrow_request import BorrowRequest
from app.models.notification_log import NotificationLog
from app.repositories.notification_repo import NotificationRepo
from app.services.borrow_request_service import BorrowRequestService
from app.services.notification_service import NotificationService, NotificationType


def test_approval_sends_mail_and_logs(make_user, make_book, period):
    reader = make_user()
    start, end = period

    with mail.record_messages() as outbox:
        result = BorrowRequestService.create_borrow_request(reader.id, make_book().id, 1, start, end)

    assert len(outbox) == 1
    assert outbox[0].recipients == [reader.email]
    log = NotificationLog.query.one()
    assert log.type == NotificationType.REQUEST_APPROVED
    assert log.borrow_request_id == result["borrow_request"].id
    assert log.success is True


def test_queue_shift_notifies_readers_behind(make_user, make_book, period):
    book = make_book(copies=0)
    start, end = period
    first = BorrowRequestService.create_borrow_request(make_user().id, book.id, 1, start, end)["borrow_request"]
    second = BorrowRequestService.create_borrow_request(make_user().id, book.id, 1, start, end)["borrow_request"]

    BorrowRequestService.reject_request(first.id)

    shifted = NotificationLog.query.filter_by(type=NotificationType.QUEUE_POSITION).all()
    assert [n.borrow_request_id for n in shifted] == [second.id]
    assert "#1" in shifted[0].message


def test_missing_email_is_logged_as_failure(make_user):
    user = make_user(email=False)

    assert NotificationService.notify(user.id, "hello", NotificationType.DUE_SOON) is False
    log = NotificationLog.query.one()
    assert log.success is False
    assert log.error_message == "missing_email"


def test_dispatch_failure_does_not_undo_the_transition(make_user, make_book, period, monkeypatch):
    def broken_log(entry):
        raise RuntimeError("notification store down")

    monkeypatch.setattr(NotificationRepo, "log", staticmethod(broken_log))
    start, end = period

    result = BorrowRequestService.create_borrow_request(make_user().id, make_book().id, 1, start, end)

    db.session.expire_all()
    assert db.session.get(BorrowRequest, result["borrow_request"].id) is not None


def test_reservation_reminder_for_queued_requests_ending_soon(make_user, make_book, today):
    book = make_book(copies=0)
    soon = BorrowRequestService.create_borrow_request(
        make_user().id, book.id, 1, today + timedelta(days=1), today + timedelta(days=3)
    )["borrow_request"]
    BorrowRequestService.create_borrow_request(
        make_user().id, book.id, 1, today + timedelta(days=1), today + timedelta(days=10)
    )

    assert BorrowRequestService.send_reservation_reminders(today) == 1
    log = NotificationLog.query.filter_by(type=NotificationType.RESERVATION_REMINDER).one()
    assert log.borrow_request_id == soon.id
    assert NotificationRepo.already_sent_today(NotificationType.RESERVATION_REMINDER, borrow_request_id=soon.id)

    # once a day
    assert BorrowRequestService.send_reservation_reminders(today) == 0


def test_reservation_reminder_skips_approved_requests(make_user, make_book, today):
    BorrowRequestService.create_borrow_request(
        make_user().id, make_book(copies=1).id, 1, today + timedelta(days=1), today + timedelta(days=2)
    )

    assert BorrowRequestService.send_reservation_reminders(today) == 0
