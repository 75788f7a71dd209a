"""POST /api/reconcile: run one reconciliation pass on demand."""
import logging
import threading

from flask import Blueprint, current_app, jsonify, request

from license_manager.api.decorators import require_trigger_token
from license_manager.core.azure_devops.exceptions import GroupEntitlementNotFoundError
from license_manager.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

bp = Blueprint("reconcile", __name__)

# One pass at a time per process
_run_lock = threading.Lock()


def _flag(name: str):
    """Optional boolean query parameter; None when absent."""
    value = request.args.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


@bp.route("/reconcile", methods=["POST"])
@require_trigger_token
def reconcile():
    if not _run_lock.acquire(blocking=False):
        return jsonify({"error": "Conflict", "message": "A reconciliation pass is already running"}), 409

    try:
        factory = current_app.config["RECONCILER_FACTORY"]
        reconciler = factory(
            current_app.config["APP_CONFIG"],
            dry_run=_flag("dry_run"),
            delete_directory_users=_flag("delete_directory_users"),
        )
        report = reconciler.run()
    except ConfigurationError as exc:
        logger.error("Reconcile aborted, configuration error: %s", exc)
        return jsonify({"error": "Configuration Error", "message": str(exc)}), 500
    except GroupEntitlementNotFoundError as exc:
        logger.error("Reconcile aborted: %s", exc)
        return jsonify({"error": "Group Entitlement Not Found", "message": str(exc)}), 502
    finally:
        _run_lock.release()

    return jsonify(report.to_dict()), 200
