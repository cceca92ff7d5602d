"""
Declarative base shared by all models
"""
import uuid

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_uuid() -> str:
    """Default factory for string UUID primary keys"""
    return str(uuid.uuid4())
