from flask import Flask
from pathlib import Path
import os

def create_app(test_config: dict | None = None) -> Flask:
    """
    App factory.

    Builds config from the environment, wires the database engine into
    ``app.extensions`` and registers the API blueprint.
    """
    app = Flask(__name__, instance_relative_config=False)

    repo_root = Path(__file__).resolve().parents[1]

    # Support environment variable for database path
    db_path_env = os.environ.get("APP_DB_PATH")
    if db_path_env:
        db_path = Path(db_path_env)
        # Convert relative paths to absolute based on repo root
        if not db_path.is_absolute():
            db_path = repo_root / db_path
    else:
        db_path = repo_root / "data" / "famtree.sqlite"

    data_dir = db_path.parent
    uploads_env = os.environ.get("APP_UPLOADS_DIR")
    uploads_dir = Path(uploads_env) if uploads_env else data_dir / "uploads"

    app.config.from_mapping(
        DATABASE=str(db_path),
        UPLOADS_DIR=str(uploads_dir),
        LOG_DIR=os.environ.get("APP_LOG_DIR") or str(repo_root / "logs"),
        JWT_SECRET=os.environ.get("FAMTREE_JWT_SECRET", "dev-secret-change"),
        JWT_EXPIRES_HOURS=int(os.environ.get("FAMTREE_JWT_EXPIRES_HOURS", "12")),
        # .famtree packages embed every image, so the ceiling is generous
        MAX_CONTENT_LENGTH=100 * 1024 * 1024,
        JSON_SORT_KEYS=False,
        TESTING=False,
    )

    if test_config:
        app.config.update(test_config)

    # Ensure storage directories exist
    Path(app.config["DATABASE"]).parent.mkdir(parents=True, exist_ok=True)
    for sub in ("originals", "thumbnails"):
        (Path(app.config["UPLOADS_DIR"]) / sub).mkdir(parents=True, exist_ok=True)

    if not app.config["TESTING"]:
        from .logging_config import setup_logging
        setup_logging(app)

    from . import db
    db.init_app(app)

    from .errors import register_error_handlers
    register_error_handlers(app)

    from .routes import api_bp
    app.register_blueprint(api_bp)

    return app
