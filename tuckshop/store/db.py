from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tuckshop.settings import settings
from tuckshop.store.orm import Base


def make_engine(url: str = None, echo: bool = None) -> Engine:
    url = url or settings.DATABASE_URL
    kwargs = {"echo": settings.DATABASE_ECHO if echo is None else echo, "future": True}
    if url.startswith("sqlite"):
        # Worker threads share the engine; in-memory databases must share one connection too.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False: objects handed back to callers stay readable after commit
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
