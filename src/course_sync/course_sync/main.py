from __future__ import annotations

import atexit
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from config import get_settings_module, load_settings

from .container import Container, build_container
from .database.bootstrap import apply_schema, missing_tables
from .runtime import SyncRuntime
from .sync.controller import register as register_sync

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[3] / "database" / "schema.sql"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(*, container: Optional[Container] = None, runtime: Optional[SyncRuntime] = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = load_settings()
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))
    app.secret_key = getattr(settings, "SECRET_KEY")
    db_config = getattr(settings, "DB_CONFIG")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))

    logger.info(
        "settings=%s db=%s@%s:%s/%s",
        settings_module,
        db_config.get("user"),
        db_config.get("host"),
        db_config.get("port", 3306),
        db_config.get("database"),
    )

    if container is None and bool(getattr(settings, "AUTO_INIT_DB", False)):
        apply_schema(db_config, schema_path=SCHEMA_PATH)
        missing = missing_tables(db_config)
        if missing:
            logger.warning("Schema applied but tables are missing: %s", ", ".join(missing))
        else:
            logger.info("Schema ready")

    container = container or build_container(db_config=db_config, settings=settings)
    if runtime is None:
        runtime = SyncRuntime(container.queue, container.runner)
        runtime.start()

        def _shutdown() -> None:
            runtime.run(container.gateway.aclose())
            runtime.stop()

        atexit.register(_shutdown)

    register_sync(app, container, runtime)
    app.extensions["course_sync"] = {"container": container, "runtime": runtime}

    return app
