"""Column helpers shared by the Plote models"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String

# Ids are UUID4 strings in canonical form
ID_LENGTH = 36


def generate_uuid() -> str:
    return str(uuid.uuid4())


def id_column() -> Column:
    """String primary key filled with a fresh UUID on insert"""
    return Column(String(ID_LENGTH), primary_key=True, default=generate_uuid)


def owner_column(table: str) -> Column:
    """Required reference to `<table>.id`; the row goes when its parent goes"""
    return Column(String(ID_LENGTH), ForeignKey(f"{table}.id", ondelete="CASCADE"), nullable=False)


def created_column() -> Column:
    return Column(DateTime, default=datetime.utcnow, nullable=False)


def updated_column() -> Column:
    return Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
