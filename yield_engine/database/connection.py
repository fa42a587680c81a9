from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from yield_engine.config import settings
from yield_engine.database.models import Base


def create_db_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    """Create an engine for grant storage and make sure the schema exists."""
    url = url or settings.db.url
    kwargs = {"echo": settings.db.echo if echo is None else echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}

    engine = create_engine(url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)
