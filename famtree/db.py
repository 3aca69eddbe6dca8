from flask import current_app, g
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

EXTENSION_KEY = "famtree_db"


class Database:
    """Engine and session factory owned by one Flask app."""

    def __init__(self, database_url: str):
        self.engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        if database_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_schema(self) -> None:
        from .models import Base
        Base.metadata.create_all(self.engine)
        # Non-breaking startup migrations / legacy compatibility
        ensure_relationship_date_columns(self.engine)
        ensure_person_images_index(self.engine)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_database() -> Database:
    return current_app.extensions[EXTENSION_KEY]


def get_engine() -> Engine:
    """Get the SQLAlchemy engine of the current app."""
    return get_database().engine


def get_session() -> Session:
    """Get a SQLAlchemy session tied to the Flask request context."""
    if "db_session" not in g:
        g.db_session = get_database().session_factory()
    return g.db_session


def close_session(e=None) -> None:
    """Close the SQLAlchemy session at the end of the request."""
    session = g.pop("db_session", None)
    if session is not None:
        session.close()


def init_app(app) -> None:
    """Initialize database with Flask app."""
    from pathlib import Path

    db_path = app.config["DATABASE"]
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    database = Database(f"sqlite:///{db_path}")
    database.create_schema()
    app.extensions[EXTENSION_KEY] = database

    app.teardown_appcontext(close_session)


def ensure_relationship_date_columns(engine) -> None:
    """Add relationships.start_date and relationships.end_date for legacy DBs (idempotent)."""
    inspector = inspect(engine)
    if "relationships" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("relationships")}
    with engine.begin() as conn:
        if "start_date" not in columns:
            conn.execute(text("ALTER TABLE relationships ADD COLUMN start_date TEXT"))
        if "end_date" not in columns:
            conn.execute(text("ALTER TABLE relationships ADD COLUMN end_date TEXT"))


def ensure_person_images_index(engine) -> None:
    """Index person_images by owner for databases created before the index existed."""
    inspector = inspect(engine)
    if "person_images" not in inspector.get_table_names():
        return
    with engine.begin() as conn:
        conn.execute(text("CREATE INDEX IF NOT EXISTS idx_person_images_person ON person_images(person_id)"))
