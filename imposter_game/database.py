# imposter_game/database.py
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all models
Base = declarative_base()


def make_session_factory(database_url: Optional[str], create_tables: bool = True):
    """
    Build a session factory for the shared store.
    Returns None when no URL is configured (multi-device mode disabled).
    """
    if not database_url:
        return None

    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if create_tables:
        import imposter_game.db_models  # noqa: F401  registers the tables
        Base.metadata.create_all(bind=engine)

    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
