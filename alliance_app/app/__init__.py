from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from .config import Config

db = SQLAlchemy()
migrate = Migrate()

def create_app(config=None, gateway=None):
    app = Flask(__name__)
    app.config.from_object(config or Config)

    # Configure logging
    import logging
    app.logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    formatter = logging.Formatter('[%(asctime)s] %(levelname)s in %(module)s: %(message)s')
    handler.setFormatter(formatter)
    app.logger.addHandler(handler)

    # If using a file-based SQLite URI, ensure the parent directory exists so the DB file can be created.
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if db_uri and db_uri.startswith("sqlite:") and "///" in db_uri and ":memory:" not in db_uri:
        from pathlib import Path
        Path(db_uri.split("///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)

    # Sessions, teardown queue, gateway and command registry live for the whole process
    from .runtime import build_runtime

    app.extensions["alliance"] = build_runtime(app, gateway)

    # health check for the load balancer
    @app.route("/health", methods=["GET"])
    def health_check():
        return ("OK", 200)

    from .interactions.routes import interactions_bp

    app.register_blueprint(interactions_bp)

    # Register CLI commands
    from .cli import alliance_cli

    app.cli.add_command(alliance_cli)

    return app
