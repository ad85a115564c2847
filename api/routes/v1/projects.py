"""
api/routes/v1/projects.py -- Project CRUD REST endpoints.

Routes:
  GET    /api/v1/projects              -- caller's projects, paged + search
  POST   /api/v1/projects              -- create a project
  GET    /api/v1/projects/all          -- every project, optional ?userId= filter (admin only)
  GET    /api/v1/projects/{id}         -- one project
  PUT    /api/v1/projects/{id}         -- partial update
  DELETE /api/v1/projects/{id}         -- delete

Ownership is enforced in ProjectStore: every per-project query is scoped by
the caller's user id, so another user's project answers 404 exactly like a
missing one.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import Envelope, Pagination, ProjectCreate, ProjectList, ProjectOut, ProjectUpdate
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from core.errors import NotFoundError, ValidationError
from projects.models import Project
from projects.store import ProjectStore

logger = logging.getLogger("saaskit.projects")

# Auth policy:
# - GET/POST          /api/v1/projects:      requires auth (get_current_user)
# - GET               /api/v1/projects/all:  requires admin (require_admin)
# - GET/PUT/DELETE    /api/v1/projects/{id}: requires auth + ownership scoped in store
router = APIRouter()


def _store(request: Request) -> ProjectStore:
    return request.app.state.project_store


@router.get("/projects", response_model=Envelope[ProjectList])
def list_projects(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    current_user: User = Depends(get_current_user),
) -> Envelope[ProjectList]:
    projects, total = _store(request).list_projects(
        user_id=current_user.id, offset=(page - 1) * limit, limit=limit, search=search
    )
    return Envelope(
        data=ProjectList(
            projects=[ProjectOut.from_domain(p) for p in projects],
            pagination=Pagination.build(page, limit, total),
        )
    )


@router.post("/projects", response_model=Envelope[ProjectOut], status_code=201)
def create_project(
    request: Request,
    body: ProjectCreate,
    current_user: User = Depends(get_current_user),
) -> Envelope[ProjectOut]:
    store = _store(request)
    project_id = store.create_project(
        Project(user_id=current_user.id, name=body.name, description=body.description)
    )
    logger.info("User %s created project %s", current_user.id, project_id)
    return Envelope(
        message="Project created successfully",
        data=ProjectOut.from_domain(store.get_project(project_id, current_user.id)),
    )


@router.get("/projects/all", response_model=Envelope[ProjectList])
def list_all_projects(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    user_id: Optional[int] = Query(default=None, alias="userId"),
    _admin: User = Depends(require_admin),
) -> Envelope[ProjectList]:
    """Admin view across all owners. Declared before /projects/{id} so "all" is not an id."""
    projects, total = _store(request).list_projects(
        user_id=user_id, offset=(page - 1) * limit, limit=limit, search=search
    )
    return Envelope(
        data=ProjectList(
            projects=[ProjectOut.from_domain(p) for p in projects],
            pagination=Pagination.build(page, limit, total),
        )
    )


@router.get("/projects/{project_id}", response_model=Envelope[ProjectOut])
def get_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> Envelope[ProjectOut]:
    project = _store(request).get_project(project_id, current_user.id)
    if project is None:
        raise NotFoundError("Project not found.")
    return Envelope(data=ProjectOut.from_domain(project))


@router.put("/projects/{project_id}", response_model=Envelope[ProjectOut])
def update_project(
    request: Request,
    project_id: int,
    body: ProjectUpdate,
    current_user: User = Depends(get_current_user),
) -> Envelope[ProjectOut]:
    """Apply only the fields present in the body. An explicit null name or isActive is ignored."""
    fields = body.model_dump(exclude_unset=True)
    for key in ("name", "is_active"):
        if key in fields and fields[key] is None:
            del fields[key]
    if not fields:
        raise ValidationError("No fields to update.")
    store = _store(request)
    if not store.update_project(project_id, current_user.id, **fields):
        raise NotFoundError("Project not found.")
    return Envelope(
        message="Project updated successfully",
        data=ProjectOut.from_domain(store.get_project(project_id, current_user.id)),
    )


@router.delete("/projects/{project_id}", response_model=Envelope[None])
def delete_project(
    request: Request,
    project_id: int,
    current_user: User = Depends(get_current_user),
) -> Envelope[None]:
    if not _store(request).delete_project(project_id, current_user.id):
        raise NotFoundError("Project not found.")
    logger.info("User %s deleted project %s", current_user.id, project_id)
    return Envelope(message="Project deleted successfully")
