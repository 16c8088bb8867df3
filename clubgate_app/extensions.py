# clubgate_app/extensions.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text


db = SQLAlchemy()
migrate = Migrate()
scheduler = BackgroundScheduler(daemon=True, timezone="UTC")


def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)


def ping_database() -> None:
    """Raises if the database cannot be reached. Needs an app context."""
    db.session.execute(text("SELECT 1"))


def register_cli(app):
    @app.cli.command("init-db")
    def init_db_cmd():
        """Creates the tables (DEV/MVP). In production use flask db upgrade."""
        with app.app_context():
            ping_database()
            db.create_all()
            print("Tables created.")

    @app.cli.command("run-renewals")
    def run_renewals_cmd():
        """Runs the renewal sweep once."""
        with app.app_context():
            report = app.extensions["renewals"].sweep()
            print(f"Renewals: {report.summary()}")

    @app.cli.command("expire-payments")
    def expire_payments_cmd():
        """Expires open payments whose provider-side window has passed."""
        with app.app_context():
            expired = app.extensions["engine"].expire_stale_payments()
            print(f"Expired payments: {expired}")
