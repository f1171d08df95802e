from flask import Blueprint, request, jsonify

from app.errors import LibraryError, RenewalRejected
from app.models.user import UserRole
from app.services.borrow_record_service import BorrowRecordService
from app.utils.decorators import current_user, role_required
from app.utils.responses import error_response, parse_date, parse_positive_int

borrow_record_bp = Blueprint("borrow_records", __name__)


def _record_json(record):
    return {
        "id": record.id,
        "user_id": record.user_id,
        "borrow_date": record.borrow_date.isoformat(),
        "return_date": record.return_date.isoformat(),
        "actual_return_date": record.actual_return_date.isoformat() if record.actual_return_date else None,
        "status": record.status,
        "renewal_count": record.renewal_count,
    }


@borrow_record_bp.post("/<int:record_id>/renew")
@role_required(UserRole.READER)
def renew(record_id: int):
    user_id, _role = current_user()
    try:
        record = BorrowRecordService.renew_loan(record_id, user_id)
        return jsonify({
            "success": True,
            "message": f"Renewal successful. New return date: {record.return_date.isoformat()}",
            "new_return_date": record.return_date.isoformat(),
            "data": _record_json(record),
        })
    except RenewalRejected as e:
        return jsonify({
            "success": False,
            "message": e.message,
            "book_id": e.book_id,
            "book_title": e.book_title,
        }), e.status_code
    except LibraryError as e:
        return error_response(e)


@borrow_record_bp.post("/<int:record_id>/return")
@role_required(*UserRole.STAFF)
def return_books(record_id: int):
    try:
        record, promoted = BorrowRecordService.return_loan(record_id)
        return jsonify({
            "success": True,
            "message": "Books returned successfully",
            "data": _record_json(record),
            "promoted_requests": [r.id for r in promoted],
        })
    except LibraryError as e:
        return error_response(e)


@borrow_record_bp.post("/ebooks")
@role_required(UserRole.READER)
def borrow_ebook():
    data = request.get_json(silent=True) or {}
    user_id, _role = current_user()
    try:
        result = BorrowRecordService.borrow_ebook(
            user_id=user_id,
            book_id=parse_positive_int(data.get("book_id"), "book_id"),
            start_date=parse_date(data.get("start_date"), "start_date"),
            end_date=parse_date(data.get("end_date"), "end_date"),
        )
        return jsonify({
            "success": True,
            "message": "Ebook borrowed successfully. You can read it now.",
            "borrow_request_id": result["borrow_request"].id,
            "data": _record_json(result["borrow_record"]),
        }), 201
    except LibraryError as e:
        return error_response(e)


@borrow_record_bp.post("/<int:record_id>/return-ebook")
@role_required(UserRole.READER)
def return_ebook(record_id: int):
    user_id, _role = current_user()
    try:
        record = BorrowRecordService.return_ebook(record_id, user_id)
        return jsonify({"success": True, "message": "Ebook returned successfully", "data": _record_json(record)})
    except LibraryError as e:
        return error_response(e)
