# SQLAlchemy wiring shared by models, crud helpers and API dependencies.
# Tests swap `engine` and `SessionLocal` for a throwaway SQLite file.

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from zerospam.core.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=settings.DB_ECHO,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
