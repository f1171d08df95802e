# app/models/notification_log.py
from datetime import datetime
from app.extensions import db

class NotificationLog(db.Model):
    __tablename__ = "notification_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    borrow_request_id = db.Column(db.Integer, db.ForeignKey("borrow_requests.id"), nullable=True, index=True)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey("borrow_records.id"), nullable=True, index=True)

    # request_approved, queue_position, request_rejected, due_soon ...
    type = db.Column(db.String(50), nullable=False, default="system")

    email = db.Column(db.String(255), nullable=True)
    message = db.Column(db.String(1000), nullable=True)

    sent_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.String(500), nullable=True)

    user = db.relationship("User", backref="notifications")
