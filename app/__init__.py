from flask import Flask, jsonify
from app.config import Config
from app.extensions import db, migrate, jwt, mail


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # 1) db first: models and services need db.session
    db.init_app(app)

    # models register their tables on db.metadata at import time
    from app.models import user, book, book_item, borrow_request, borrow_record, notification_log  # noqa: F401

    # 2) the remaining extensions
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)

    # 3) API blueprints
    from app.controllers.borrow_request_controller import borrow_request_bp
    from app.controllers.borrow_record_controller import borrow_record_bp
    from app.controllers.job_controller import job_bp
    app.register_blueprint(borrow_request_bp, url_prefix="/borrow-requests")
    app.register_blueprint(borrow_record_bp, url_prefix="/borrow-records")
    app.register_blueprint(job_bp, url_prefix="/jobs")

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    # background circulation sweep (expiry / overdue / reminders)
    from app.tasks.scheduler import start_scheduler
    start_scheduler(app)

    return app
