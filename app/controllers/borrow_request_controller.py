from flask import Blueprint, request, jsonify

from app.errors import LibraryError
from app.models.user import UserRole
from app.services.borrow_request_service import BorrowRequestService
from app.services.queue_service import QueueService
from app.utils.decorators import current_user, role_required
from app.utils.responses import error_response, parse_date, parse_positive_int

borrow_request_bp = Blueprint("borrow_requests", __name__)

STAFF = UserRole.STAFF


def _request_json(br, queue_position=None):
    item = br.item
    return {
        "id": br.id,
        "user_id": br.user_id,
        "book_id": item.book_id if item else None,
        "book_title": item.book.title if item and item.book else None,
        "quantity": item.quantity if item else None,
        "start_date": br.start_date.isoformat(),
        "end_date": br.end_date.isoformat(),
        "status": br.status,
        "queue_position": queue_position,
        "created_at": br.created_at.isoformat(),
    }


@borrow_request_bp.post("/")
@role_required(UserRole.READER)
def create_borrow_request():
    data = request.get_json(silent=True) or {}
    user_id, _role = current_user()
    try:
        result = BorrowRequestService.create_borrow_request(
            user_id=user_id,
            book_id=parse_positive_int(data.get("book_id"), "book_id"),
            quantity=parse_positive_int(data.get("quantity", 1), "quantity"),
            start_date=parse_date(data.get("start_date"), "start_date"),
            end_date=parse_date(data.get("end_date"), "end_date"),
        )
        return jsonify({
            "success": True,
            "message": result["message"],
            "status": result["status"],
            "queue_position": result["queue_position"],
            "data": _request_json(result["borrow_request"], result["queue_position"]),
        }), 201
    except LibraryError as e:
        return error_response(e)


@borrow_request_bp.get("/my")
@role_required(UserRole.READER)
def my_borrow_requests():
    user_id, _role = current_user()
    rows = BorrowRequestService.list_my_requests(user_id)
    return jsonify({"success": True, "data": [_request_json(br, pos) for br, pos in rows]})


@borrow_request_bp.get("/<int:request_id>/queue-position")
@role_required(UserRole.READER, *STAFF)
def queue_position(request_id: int):
    try:
        position = QueueService.get_queue_position(request_id)
        return jsonify({"success": True, "request_id": request_id, "queue_position": position})
    except LibraryError as e:
        return error_response(e)


@borrow_request_bp.post("/<int:request_id>/approve")
@role_required(*STAFF)
def approve(request_id: int):
    try:
        br = BorrowRequestService.approve_request(request_id)
        return jsonify({"success": True, "message": "Borrow request approved successfully", "data": _request_json(br)})
    except LibraryError as e:
        return error_response(e)


@borrow_request_bp.post("/<int:request_id>/reject")
@role_required(*STAFF)
def reject(request_id: int):
    try:
        br = BorrowRequestService.reject_request(request_id)
        return jsonify({"success": True, "message": "Borrow request rejected successfully", "data": _request_json(br)})
    except LibraryError as e:
        return error_response(e)


@borrow_request_bp.post("/<int:request_id>/cancel")
@role_required(UserRole.READER)
def cancel(request_id: int):
    user_id, _role = current_user()
    try:
        br = BorrowRequestService.cancel_request(request_id, user_id)
        return jsonify({"success": True, "message": "Borrow request cancelled successfully", "data": _request_json(br)})
    except LibraryError as e:
        return error_response(e)


@borrow_request_bp.post("/<int:request_id>/fulfill")
@role_required(*STAFF)
def fulfill(request_id: int):
    data = request.get_json(silent=True) or {}
    try:
        raw_ids = data.get("book_item_ids") or []
        if not isinstance(raw_ids, list):
            raw_ids = []
        item_ids = [parse_positive_int(x, "book_item_id") for x in raw_ids]
        record = BorrowRequestService.fulfill_request(request_id, item_ids)
        return jsonify({
            "success": True,
            "message": "Borrow request fulfilled",
            "borrow_record_id": record.id,
            "return_date": record.return_date.isoformat(),
        }), 201
    except LibraryError as e:
        return error_response(e)
