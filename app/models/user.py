from datetime import datetime
from app.extensions import db


class UserRole:
    READER = "reader"
    LIBRARIAN = "librarian"
    ADMIN = "admin"

    STAFF = (LIBRARIAN, ADMIN)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(20), nullable=False, default=UserRole.READER)  # reader/librarian/admin
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
