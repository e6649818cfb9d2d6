"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and configuration.
"""
from __future__ import annotations
import atexit
import logging
from typing import Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from app.config import AppConfig, load_settings
from app.core.provisioning_service import ProvisioningService, build_service

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(config: Optional[AppConfig] = None, service: Optional[ProvisioningService] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings to use (loaded from the environment when omitted)
        service: Pre-built provisioning service (tests inject one wired to fakes)
    """
    cfg = config or load_settings()

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.config["JSON_SORT_KEYS"] = False

    _configure_logging(cfg.log_level)

    if service is None:
        service = build_service(cfg)
        dispatcher = service.notifications.dispatcher
        atexit.register(_drain_notifications, dispatcher, cfg.notification_timeout)
    app.config["PROVISIONING_SERVICE"] = service

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    # Register blueprints
    from app.api import health, errors, users, mailbox

    app.register_blueprint(health.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(mailbox.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print("[flask_app] Provisioning API registered at /api/users and /api/exchange/mailbox")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo defaults")

    return app


def _configure_logging(level: str) -> None:
    """Apply LOG_LEVEL to the app.* logger hierarchy."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("app").setLevel(level)


def _drain_notifications(dispatcher, timeout: float) -> None:
    """Give in-flight notifications a chance to finish at interpreter exit."""
    if not dispatcher.drain(timeout):
        print("[flask_app] WARNING: notifications still pending at shutdown were dropped")
    dispatcher.shutdown(wait_for_pending=False)


# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
