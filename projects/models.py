"""
projects/models.py -- Domain dataclass for the project resource.

Pure data container with zero logic. Ownership rules live in projects/store.py,
which scopes every query by user_id.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Project:
    """A named workspace owned by exactly one user.

    id is None before the record is written to the database.
    """

    user_id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
