from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

import config


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite needs cross-thread access for the dev server."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, echo=echo, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL, echo=config.SQL_ECHO)


def create_db_and_tables() -> None:
    """Create all tables in the database if they don't exist."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]
