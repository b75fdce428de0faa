# bomabnb/database.py
"""Engine, session factory and the request-scoped session kept on ``flask.g``."""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from flask import g

from bomabnb.config import Config

engine_kwargs = {
    "echo": Config.SQL_ECHO,
    "future": True,
    "pool_pre_ping": True,
}

if Config.DATABASE_URL.startswith("sqlite"):
    # The status poller reads from its own thread
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs["pool_size"] = Config.DB_POOL_SIZE
    engine_kwargs["max_overflow"] = Config.DB_MAX_OVERFLOW

engine = create_engine(Config.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()


def get_db():
    """Session for the current request, opened on first use."""
    if 'db' not in g:
        g.db = SessionLocal()
    return g.db


def close_db(e=None):
    db = g.pop('db', None)
    if db is not None:
        if e is not None:
            db.rollback()
        db.close()


@contextmanager
def session_scope(factory=None):
    """Short-lived session for work outside a request, e.g. a poller thread."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
