# clubgate_app/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from datetime import datetime, timezone

from flask import Flask
from config import Config, TestingConfig, StagingConfig, ProductionConfig
from .extensions import scheduler, init_extensions, register_cli
from .services import init_services
from .services.renewals import init_scheduler
from .blueprints.webhooks import bp as webhooks_bp

CONFIGS = {
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    if config_object is None:
        config_object = CONFIGS.get(os.getenv("APP_ENV", "").lower(), Config)
    app.config.from_object(config_object)

    # Extensions (DB/Migrate)
    init_extensions(app)

    # Services: store, providers, gateway, engine... live in app.extensions
    init_services(app)
    app.config["STARTED_AT"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    # Blueprints
    app.register_blueprint(webhooks_bp)

    # CLI (flask init-db, run-renewals, expire-payments)
    register_cli(app)

    # Daily renewal sweep
    if not app.config.get("TESTING") and os.getenv("DISABLE_SCHEDULER") != "1":
        init_scheduler(app, scheduler)

    return app
