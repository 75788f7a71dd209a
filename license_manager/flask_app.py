"""Flask application factory for the HTTP reconcile trigger.

Routes:
    GET  /health         liveness
    GET  /ready          readiness (settings loaded, trigger token set)
    POST /api/reconcile  run one pass, bearer token required
"""
from __future__ import annotations
from typing import Callable, Optional

from flask import Flask

from license_manager.config import AppConfig, configure_logging, load_settings
from license_manager.core.reconciler import build_reconciler


def create_app(cfg: Optional[AppConfig] = None, reconciler_factory: Optional[Callable] = None) -> Flask:
    """Create and configure Flask application."""
    if cfg is None:
        cfg = load_settings()
        configure_logging(cfg.log_level)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["RECONCILER_FACTORY"] = reconciler_factory or build_reconciler

    from license_manager.api import errors, health, reconcile

    app.register_blueprint(health.bp)
    app.register_blueprint(reconcile.bp, url_prefix="/api")
    errors.register_error_handlers(app)

    print(f"[flask_app] Organization={cfg.organization}; dry_run={cfg.dry_run}")
    print("[flask_app] Reconcile trigger registered at /api/reconcile")
    if not cfg.reconcile_trigger_token:
        print("[flask_app] WARNING: RECONCILE_TRIGGER_TOKEN not set, /api/reconcile will refuse requests")

    return app
