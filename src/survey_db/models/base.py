"""Declarative base for the intake tables.

``Base.metadata`` is the migration target in ``migrations/env.py``; every
model module must be imported (see ``survey_db.models``) before it is used.
"""

from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # Free-form dict columns (cache snapshots) map to JSONB
    type_annotation_map = {
        dict[str, Any]: JSONB,
    }
