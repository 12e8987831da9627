from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from app.models.project import Project
from app.models.project_file import ProjectFile


@pytest.fixture
def make_project(db_session):
    """Insert a project (and optional files) with controlled timestamps"""
    async def _make(user, name: str, created_at: datetime, files=()):
        project = Project(
            name=name,
            user_id=user.id,
            roll_number=user.roll_number,
            created_at=created_at,
        )
        db_session.add(project)
        await db_session.flush()
        for title, file_created in files:
            db_session.add(ProjectFile(
                project_id=project.id,
                user_id=user.id,
                title=title,
                original_name=f"{title}.pdf",
                storage_key=f"{title}-key.pdf",
                content_type="application/pdf",
                size_bytes=10,
                created_at=file_created,
            ))
        await db_session.commit()
        return project
    return _make


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "?rollNumber=", "?rollNumber=%20%20"])
async def test_view_by_roll_requires_roll_number(client: AsyncClient, query):
    response = await client.get(f"/api/public-projects/view-by-roll{query}")

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Roll number is required"}


@pytest.mark.asyncio
async def test_view_by_roll_unknown(client: AsyncClient):
    response = await client.get("/api/public-projects/view-by-roll", params={"rollNumber": "NOPE"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "projects": []}


@pytest.mark.asyncio
async def test_view_by_roll_newest_first(client: AsyncClient, make_user, make_project):
    """Only that student's projects, newest first, no auth needed"""
    owner = await make_user("R1")
    other = await make_user("R2")
    now = datetime.utcnow()
    await make_project(owner, "Oldest", now - timedelta(days=2))
    await make_project(owner, "Newest", now)
    await make_project(owner, "Middle", now - timedelta(days=1))
    await make_project(other, "Someone else", now)

    response = await client.get("/api/public-projects/view-by-roll", params={"rollNumber": "R1"})

    assert response.status_code == 200
    projects = response.json()["projects"]
    assert [p["name"] for p in projects] == ["Newest", "Middle", "Oldest"]
    assert all(p["roll_number"] == "R1" for p in projects)


@pytest.mark.asyncio
async def test_project_detail(client: AsyncClient, make_user, make_project):
    owner = await make_user("R1")
    now = datetime.utcnow()
    project = await make_project(owner, "Robot", now, files=[
        ("second", now + timedelta(seconds=2)),
        ("first", now + timedelta(seconds=1)),
    ])

    response = await client.get(f"/api/public-projects/{project.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["project"]["name"] == "Robot"
    assert [f["title"] for f in data["files"]] == ["first", "second"]
    assert data["files"][0]["url"] == "http://blobs.test/first-key.pdf"


@pytest.mark.asyncio
async def test_project_detail_without_files(client: AsyncClient, make_user, make_project):
    owner = await make_user("R1")
    project = await make_project(owner, "Bare", datetime.utcnow())

    response = await client.get(f"/api/public-projects/{project.id}")

    assert response.status_code == 200
    assert response.json()["files"] == []


@pytest.mark.asyncio
async def test_project_detail_not_found(client: AsyncClient):
    response = await client.get("/api/public-projects/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404
    assert response.json()["success"] is False
