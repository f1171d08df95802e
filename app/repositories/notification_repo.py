from datetime import datetime

from app.models.notification_log import NotificationLog
from app.extensions import db

class NotificationRepo:
    @staticmethod
    def already_sent_today(notif_type: str, borrow_record_id: int | None = None,
                           borrow_request_id: int | None = None) -> bool:
        start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        q = NotificationLog.query.filter(
            NotificationLog.type == notif_type,
            NotificationLog.sent_at >= start,
        )
        if borrow_record_id is not None:
            q = q.filter(NotificationLog.borrow_record_id == borrow_record_id)
        if borrow_request_id is not None:
            q = q.filter(NotificationLog.borrow_request_id == borrow_request_id)
        return q.first() is not None

    @staticmethod
    def log(entry: NotificationLog):
        db.session.add(entry)
        db.session.commit()
        return entry
