# app/tasks/circulation_check.py
from datetime import datetime

from flask import current_app

from app.extensions import db
from app.services.borrow_record_service import BorrowRecordService
from app.services.borrow_request_service import BorrowRequestService


def run_circulation_check(now: datetime | None = None) -> dict:
    """
    Out-of-band sweep, never part of a request's own transaction.
    - expired: APPROVED requests past the pickup window -> EXPIRED (+ queue promotion)
    - ebooks_returned: ebook loans past return_date are closed
    - overdue: physical loans past return_date -> OVERDUE
    - due_soon: reminder for physical loans due within DUE_SOON_DAYS
    - reservation reminders: PENDING requests whose window ends soon
    Needs an active app context.
    """
    now = now or datetime.utcnow()
    today = now.date()

    try:
        expiry = BorrowRequestService.expire_stale_approvals(now)
        ebooks_returned = BorrowRecordService.auto_return_expired_ebooks(today)
        overdue = BorrowRecordService.mark_overdue_loans(today)
        due_soon = BorrowRecordService.send_due_soon_reminders(today)
        reservation_reminders = BorrowRequestService.send_reservation_reminders(today)
    except Exception:
        db.session.rollback()
        raise

    summary = {
        "expired": expiry["expired"],
        "promoted": expiry["promoted"],
        "ebooks_returned": ebooks_returned,
        "overdue": overdue,
        "due_soon_sent": due_soon,
        "reservation_reminders_sent": reservation_reminders,
    }
    current_app.logger.info(
        f"[circulation_check] expired={len(summary['expired'])} promoted={len(summary['promoted'])} "
        f"ebooks_returned={len(ebooks_returned)} overdue={overdue} due_soon_sent={due_soon} "
        f"reservation_reminders_sent={reservation_reminders}"
    )
    return summary
