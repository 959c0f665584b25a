import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/matchcore")

Base = declarative_base()


def make_engine(url: str | None = None) -> Engine:
    return create_engine(url or DATABASE_URL, future=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


def init_schema(bind: Engine) -> None:
    from . import models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind)
