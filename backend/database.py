from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(config.DATABASE_URL, connect_args=_connect_args(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_collection_schema_checked = False


def ensure_collection_schema() -> None:
    global _collection_schema_checked

    if _collection_schema_checked:
        return

    with _schema_lock:
        if _collection_schema_checked:
            return

        inspector = inspect(engine)

        if 'stored_collections' not in inspector.get_table_names():
            _collection_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('stored_collections')}
        migration_steps = [
            ('updated_at', 'ALTER TABLE stored_collections ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))

        _collection_schema_checked = True
