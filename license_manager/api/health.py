"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once settings are loaded and a trigger token is configured."""
    cfg = current_app.config.get("APP_CONFIG")
    if cfg is None or not cfg.reconcile_trigger_token:
        return jsonify({"status": "not ready", "reason": "reconcile trigger token not configured"}), 503
    return ("ready", 200, {"Content-Type": "text/plain"})
