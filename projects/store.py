"""
projects/store.py -- SQLAlchemy Core persistence for projects.

Pattern: Repository + Data Mapper (same as auth/store.py).

Ownership: every per-project method takes the caller's user_id and includes
it in the WHERE clause. A project owned by someone else is indistinguishable
from one that does not exist, so routes answer 404 in both cases and never
leak another user's project ids.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from core.database import as_utc, projects, utcnow
from projects.models import Project

# Fields a caller may change through update_project().
_MUTABLE_FIELDS = {"name", "description", "is_active"}


class ProjectStore:
    """Repository for Project entities."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_project(self, project: Project) -> int:
        now = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                projects.insert().values(
                    user_id=project.user_id,
                    name=project.name,
                    description=project.description,
                    is_active=project.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_project(self, project_id: int, user_id: int) -> Optional[Project]:
        """Return the project if it exists AND belongs to user_id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                projects.select().where((projects.c.id == project_id) & (projects.c.user_id == user_id))
            ).fetchone()
        return _row_to_project(row) if row is not None else None

    def list_projects(
        self,
        user_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 10,
        search: Optional[str] = None,
    ) -> tuple[list[Project], int]:
        """Return one page of projects (newest first) and the total match count.

        user_id=None lists every user's projects (admin view).
        search matches name and description, case-insensitively; % and _ match literally.
        """
        conditions = []
        if user_id is not None:
            conditions.append(projects.c.user_id == user_id)
        if search:
            term = search.lower()
            conditions.append(
                or_(
                    func.lower(projects.c.name).contains(term, autoescape=True),
                    func.lower(projects.c.description).contains(term, autoescape=True),
                )
            )
        query = projects.select().order_by(projects.c.created_at.desc(), projects.c.id.desc())
        count = select(func.count()).select_from(projects)
        for cond in conditions:
            query = query.where(cond)
            count = count.where(cond)
        with self.engine.connect() as conn:
            rows = conn.execute(query.offset(offset).limit(limit)).fetchall()
            total = conn.execute(count).scalar() or 0
        return [_row_to_project(r) for r in rows], total

    def update_project(self, project_id: int, user_id: int, **fields) -> bool:
        """Apply a partial update. Returns False if not found or not owned by user_id.

        Unknown field names raise ValueError.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown project fields: {unknown!r}")
        fields["updated_at"] = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                projects.update()
                .where((projects.c.id == project_id) & (projects.c.user_id == user_id))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_project(self, project_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                projects.delete().where((projects.c.id == project_id) & (projects.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0


def _row_to_project(row) -> Project:
    return Project(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )
