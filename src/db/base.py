"""SQLAlchemy declarative base shared by every ORM table."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
