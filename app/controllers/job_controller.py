from flask import Blueprint, jsonify

from app.models.user import UserRole
from app.tasks.circulation_check import run_circulation_check
from app.utils.decorators import role_required

job_bp = Blueprint("jobs", __name__)


@job_bp.post("/run-circulation-check")
@role_required(UserRole.ADMIN)
def run_check():
    summary = run_circulation_check()
    return jsonify({"success": True, "message": "Circulation check executed", "data": summary})
