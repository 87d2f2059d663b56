from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def make_session_factory(database_uri, echo=False):
    """
    Build the engine and a session factory, creating tables if not present.
    """
    kwargs = {}
    if database_uri in ("sqlite://", "sqlite:///:memory:"):
        # a single shared connection, otherwise every checkout sees an empty DB
        kwargs = {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    engine = create_engine(database_uri, echo=echo, future=True, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def register_lower(dbapi_conn, connection_record):
            # SQLite's built-in lower() only folds ASCII
            dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)

    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, autocommit=False)
