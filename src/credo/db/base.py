"""Declarative base for all engine tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
