"""Request-scoped dependencies."""
from typing import Generator

from fastapi import Request
from sqlmodel import Session


def get_app_engine(request: Request):
    return request.app.state.engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """Yield a DB session bound to the app's engine."""
    with Session(request.app.state.engine) as session:
        yield session
