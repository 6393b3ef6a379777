from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(url: str):
    options = {'pool_pre_ping': True, 'future': True}
    if url.startswith('sqlite'):
        options['connect_args'] = {'check_same_thread': False}
    return create_engine(url, **options)


def build_session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_models(engine):
    # Import models so SQLAlchemy is aware of mappings.
    from . import account  # noqa: F401
    from . import id_counter  # noqa: F401
    from . import pending_signup  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_session(session_factory):
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
