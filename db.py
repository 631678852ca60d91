from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        # Ticks run on scheduler worker threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    # Rows are handed to other threads after the session closes
    return sessionmaker(bind=engine, expire_on_commit=False)
