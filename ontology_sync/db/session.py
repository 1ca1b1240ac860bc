"""Engine and session factory for the ontology metadata database."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ontology_sync.config import get_settings

settings = get_settings()


def _connect_args(database_url: str, statement_timeout_ms: int) -> dict[str, object]:
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={int(statement_timeout_ms)}"}
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.database_url, settings.store_statement_timeout_ms),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
