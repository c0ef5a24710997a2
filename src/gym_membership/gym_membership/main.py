from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from config import get_settings_module

from .attendance.controller import register as register_attendance
from .common.web import register_error_handlers
from .container import Container, build_container
from .database.bootstrap import apply_schema, list_tables
from .recovery.controller import register as register_recovery
from .reminders.controller import register as register_reminders
from .subscriptions.controller import register as register_subscriptions

logger = logging.getLogger(__name__)


def create_app(*, container: Optional[Container] = None, settings_module: Optional[str] = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = settings_module or get_settings_module()
    settings = importlib.import_module(settings_module)
    app.secret_key = getattr(settings, "SECRET_KEY")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["EXPIRING_THRESHOLD_DAYS"] = getattr(settings, "EXPIRING_THRESHOLD_DAYS", None)

    logging.basicConfig(
        level=getattr(settings, "LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    backend = str(getattr(settings, "STORE_BACKEND", "mysql")).lower()
    db_config = getattr(settings, "DB_CONFIG")
    if container is None and backend == "mysql":
        logger.info(
            "settings=%s db=%s@%s:%s/%s",
            settings_module,
            db_config.get("user"),
            db_config.get("host"),
            db_config.get("port", 3306),
            db_config.get("database"),
        )
        if bool(getattr(settings, "AUTO_INIT_DB", False)):
            schema_path = Path(__file__).resolve().parents[3] / "database" / "schema.sql"
            apply_schema(db_config, schema_path=schema_path)
            logger.info("schema ready (tables=%d)", len(list_tables(db_config)))

    container = container or build_container(settings=settings)
    app.extensions["gym_membership"] = container

    register_error_handlers(app)
    register_subscriptions(app, container)
    register_recovery(app, container)
    register_attendance(app, container)
    register_reminders(app, container)

    @app.cli.command("sweep-expired")
    def sweep_expired_command():
        """Expire every active subscription whose end date has passed."""
        report = container.subscription_service.sweep_expired_subscriptions()
        logger.info(
            "sweep finished: expired=%d skipped=%d failed=%d",
            len(report.expired_member_ids),
            len(report.skipped_member_ids),
            len(report.failed_member_ids),
        )
        print(
            f"expired={len(report.expired_member_ids)} "
            f"skipped={len(report.skipped_member_ids)} "
            f"failed={len(report.failed_member_ids)}"
        )
        if not report.ok:
            raise SystemExit(1)

    return app
