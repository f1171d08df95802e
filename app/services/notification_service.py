# app/services/notification_service.py
from __future__ import annotations

from datetime import datetime

from flask import current_app

from app.extensions import db
from app.models.notification_log import NotificationLog
from app.repositories.notification_repo import NotificationRepo
from app.repositories.user_repo import UserRepo
from app.services.mail_service import MailService


class NotificationType:
    REQUEST_APPROVED = "request_approved"
    REQUEST_QUEUED = "request_queued"
    QUEUE_POSITION = "queue_position"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_EXPIRED = "request_expired"
    LOAN_RENEWED = "loan_renewed"
    LOAN_RETURNED = "loan_returned"
    EBOOK_BORROWED = "ebook_borrowed"
    EBOOK_EXPIRED = "ebook_expired"
    RESERVATION_REMINDER = "reservation_reminder"
    DUE_SOON = "due_soon"


class NotificationService:
    @staticmethod
    def notify(
        user_id: int,
        message: str,
        notif_type: str,
        subject: str = "Library notification",
        borrow_request_id: int | None = None,
        borrow_record_id: int | None = None,
    ) -> bool:
        """
        Fire-and-forget. Called after the business transaction committed, so
        nothing here may raise back into the caller.
        """
        try:
            user = UserRepo.get_by_id(user_id)
            to_email = user.email if user else None

            ok, err = False, None
            if to_email:
                ok, err = MailService.send_email(to_email, subject, message)
            else:
                err = "missing_email"

            NotificationRepo.log(NotificationLog(
                user_id=user_id,
                borrow_request_id=borrow_request_id,
                borrow_record_id=borrow_record_id,
                type=notif_type,
                email=to_email,
                message=message,
                success=ok,
                error_message=err,
                sent_at=datetime.utcnow(),
            ))
            return ok
        except Exception as e:
            db.session.rollback()
            current_app.logger.warning(f"[notify] user={user_id} type={notif_type} failed: {e}")
            return False

    @staticmethod
    def request_approved(borrow_request) -> bool:
        item = borrow_request.item
        title = item.book.title if item and item.book else "your book"
        return NotificationService.notify(
            borrow_request.user_id,
            f"Your borrow request for '{title}' was approved. "
            "Please visit the library to collect your books.",
            NotificationType.REQUEST_APPROVED,
            subject="Library: borrow request approved",
            borrow_request_id=borrow_request.id,
        )

    @staticmethod
    def queue_position_changed(borrow_request, position: int) -> bool:
        item = borrow_request.item
        title = item.book.title if item and item.book else "your book"
        return NotificationService.notify(
            borrow_request.user_id,
            f"You are now in position #{position} in the queue for '{title}'.",
            NotificationType.QUEUE_POSITION,
            subject="Library: queue position updated",
            borrow_request_id=borrow_request.id,
        )
