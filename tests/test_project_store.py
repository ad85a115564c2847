"""
tests/test_project_store.py -- Unit tests for projects/store.py (ProjectStore).

Every test gets a fresh in-memory DB via the engine fixture in conftest.py.
"""

from __future__ import annotations

import pytest

from auth.models import User
from projects.models import Project


@pytest.fixture
def owners(user_store) -> tuple[int, int]:
    alice = user_store.create_user(User(email="alice@x.com", hashed_password="x"))
    bob = user_store.create_user(User(email="bob@x.com", hashed_password="x"))
    return alice, bob


def test_create_and_get(project_store, owners) -> None:
    alice, _ = owners
    pid = project_store.create_project(Project(user_id=alice, name="Apollo", description="moon"))
    project = project_store.get_project(pid, alice)
    assert project.name == "Apollo"
    assert project.is_active is True
    assert project.created_at.tzinfo is not None


def test_other_owner_sees_nothing(project_store, owners) -> None:
    alice, bob = owners
    pid = project_store.create_project(Project(user_id=alice, name="Apollo"))
    assert project_store.get_project(pid, bob) is None
    assert project_store.update_project(pid, bob, name="Stolen") is False
    assert project_store.delete_project(pid, bob) is False
    assert project_store.get_project(pid, alice).name == "Apollo"


def test_list_is_scoped_paged_and_newest_first(project_store, owners) -> None:
    alice, bob = owners
    for i in range(5):
        project_store.create_project(Project(user_id=alice, name=f"p{i}"))
    project_store.create_project(Project(user_id=bob, name="bob-only"))

    page, total = project_store.list_projects(user_id=alice, offset=0, limit=2)
    assert total == 5
    assert [p.name for p in page] == ["p4", "p3"]

    last, _ = project_store.list_projects(user_id=alice, offset=4, limit=2)
    assert [p.name for p in last] == ["p0"]


def test_search_matches_name_and_description(project_store, owners) -> None:
    alice, _ = owners
    project_store.create_project(Project(user_id=alice, name="Billing revamp"))
    project_store.create_project(Project(user_id=alice, name="Other", description="touches BILLING too"))
    project_store.create_project(Project(user_id=alice, name="Unrelated"))
    found, total = project_store.list_projects(user_id=alice, search="billing")
    assert total == 2
    assert {p.name for p in found} == {"Billing revamp", "Other"}


def test_search_wildcards_match_literally(project_store, owners) -> None:
    alice, _ = owners
    project_store.create_project(Project(user_id=alice, name="100% done"))
    project_store.create_project(Project(user_id=alice, name="1000 users"))
    project_store.create_project(Project(user_id=alice, name="snake_case"))
    project_store.create_project(Project(user_id=alice, name="snakeXcase"))

    found, total = project_store.list_projects(user_id=alice, search="0%")
    assert total == 1 and found[0].name == "100% done"
    found, total = project_store.list_projects(user_id=alice, search="e_c")
    assert total == 1 and found[0].name == "snake_case"


def test_admin_listing_spans_owners(project_store, owners) -> None:
    alice, bob = owners
    project_store.create_project(Project(user_id=alice, name="a"))
    project_store.create_project(Project(user_id=bob, name="b"))
    _, total = project_store.list_projects()
    assert total == 2


def test_partial_update(project_store, owners) -> None:
    alice, _ = owners
    pid = project_store.create_project(Project(user_id=alice, name="Apollo", description="moon"))
    assert project_store.update_project(pid, alice, is_active=False)
    project = project_store.get_project(pid, alice)
    assert project.is_active is False
    assert project.description == "moon"


def test_update_rejects_unknown_fields(project_store, owners) -> None:
    alice, _ = owners
    pid = project_store.create_project(Project(user_id=alice, name="Apollo"))
    with pytest.raises(ValueError):
        project_store.update_project(pid, alice, owner_id=999)
    assert project_store.get_project(pid, alice).name == "Apollo"


def test_projects_deleted_with_owner(project_store, user_store, owners) -> None:
    alice, _ = owners
    pid = project_store.create_project(Project(user_id=alice, name="Apollo"))
    user_store.delete_user(alice)
    assert project_store.get_project(pid, alice) is None
