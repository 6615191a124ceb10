# Overview: Flask API routes for dashboard and stock reports (admin only).

from flask import Blueprint, request, jsonify

from ..decorators import require_actor, require_role, ROLE_ADMIN
from ..errors import DomainError, error_response
from ..services import reporting_service

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
@require_actor
@require_role(ROLE_ADMIN)
def dashboard_route():
    try:
        result = reporting_service.dashboard_summary(
            days=request.args.get("days", default=7, type=int),
            top=request.args.get("top", default=5, type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)


@reports_bp.get("/stock-alerts")
@require_actor
@require_role(ROLE_ADMIN)
def stock_alerts_route():
    try:
        result = reporting_service.stock_alerts(
            threshold=request.args.get("threshold", type=int),
            warning_days=request.args.get("warning_days", type=int),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)


@reports_bp.get("/stock-reconciliation")
@require_actor
@require_role(ROLE_ADMIN)
def stock_reconciliation_route():
    result = reporting_service.stock_reconciliation(
        product_id=request.args.get("product_id", type=int),
    )
    return jsonify(result), 200
