"""Shared folder API: CRUD, permissions, last-admin protection, public tokens, audit log."""

import asyncio
import shutil
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from gitfolder.db.session import get_session
from gitfolder.limiter import limiter
from gitfolder.main import app
from gitfolder.shared.models import FileOperation
from gitfolder.users.models import User

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("GITFOLDER_REPOS_BASE_PATH", str(tmp_path / "repos"))
    monkeypatch.setenv("GITFOLDER_UPLOAD_TEMP_PATH", str(tmp_path / "uploads"))
    monkeypatch.setattr(limiter, "enabled", False)
    with TestClient(app) as c:
        yield c


def _other_user() -> int:
    """Insert a second user directly; returns its id."""

    async def _run() -> int:
        async with get_session() as session:
            user = User(
                oauth_provider="github",
                oauth_id=uuid.uuid4().hex,
                email="friend@example.com",
                username="friend",
                display_name="Friend",
            )
            session.add(user)
            await session.flush()
            return user.id

    return asyncio.run(_run())


def _operation_count(folder_id: int) -> int:
    async def _run() -> int:
        async with get_session() as session:
            result = await session.execute(
                select(func.count(FileOperation.id)).where(FileOperation.shared_folder_id == folder_id)
            )
            return result.scalar_one()

    return asyncio.run(_run())


def _create_folder(client: TestClient, **extra) -> dict:
    r = client.post("/api/repositories", json={"name": f"repo-{uuid.uuid4().hex[:8]}"})
    assert r.status_code == 201, r.text
    body = {"repository_id": r.json()["id"], "folder_path": "docs", "name": "Docs", **extra}
    r = client.post("/api/shared-folders", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_create_and_read_folder(client: TestClient) -> None:
    folder = _create_folder(client, description="team docs")
    assert folder["folder_path"] == "/docs"
    assert folder["is_public"] is False
    assert folder["public_token"] is None
    assert folder["user_permission"] == "admin"
    assert [p["permission_level"] for p in folder["permissions"]] == ["admin"]
    assert folder["permissions"][0]["user"]["username"] == "devuser"

    listed = client.get("/api/shared-folders").json()["folders"]
    assert folder["id"] in [f["id"] for f in listed]

    detail = client.get(f"/api/shared-folders/{folder['id']}").json()
    assert detail["description"] == "team docs"
    assert detail["repository"]["id"] == folder["repository"]["id"]


def test_create_on_unknown_repository(client: TestClient) -> None:
    r = client.post(
        "/api/shared-folders", json={"repository_id": 999999, "folder_path": "/", "name": "x"}
    )
    assert r.status_code == 404


def test_update_and_public_token(client: TestClient) -> None:
    folder = _create_folder(client)
    r = client.patch(f"/api/shared-folders/{folder['id']}", json={"is_public": True, "name": "Public Docs"})
    assert r.status_code == 200
    token = r.json()["public_token"]
    assert len(token) == 64
    assert r.json()["name"] == "Public Docs"

    public = client.get(f"/api/shared-folders/public/{token}").json()
    assert public["name"] == "Public Docs"
    assert public["is_authenticated"] is True
    assert public["repository"]["id"] == folder["repository"]["id"]

    r = client.patch(f"/api/shared-folders/{folder['id']}", json={"is_public": False})
    assert r.json()["public_token"] is None
    assert client.get(f"/api/shared-folders/public/{token}").status_code == 404
    assert client.patch(f"/api/shared-folders/{folder['id']}", json={"name": " "}).status_code == 400


def test_permissions_and_last_admin(client: TestClient) -> None:
    folder = _create_folder(client)
    folder_id = folder["id"]
    me = folder["permissions"][0]["user"]["id"]
    friend = _other_user()
    base = f"/api/shared-folders/{folder_id}/permissions"

    r = client.post(base, json={"user_id": friend, "permission_level": "contributor"})
    assert r.status_code == 200
    assert {p["user"]["id"]: p["permission_level"] for p in r.json()} == {me: "admin", friend: "contributor"}

    assert client.post(base, json={"user_id": 999999, "permission_level": "viewer"}).status_code == 404
    assert client.post(base, json={"user_id": friend, "permission_level": "owner"}).status_code == 422

    r = client.delete(f"{base}/{me}")
    assert r.status_code == 400
    assert r.json()["code"] == "LAST_ADMIN"
    r = client.post(base, json={"user_id": me, "permission_level": "viewer"})
    assert r.status_code == 400
    assert r.json()["code"] == "LAST_ADMIN"

    assert client.delete(f"{base}/{friend}").json()["success"] is True
    assert client.delete(f"{base}/{friend}").status_code == 404

    # Hand admin to the friend, then step down
    client.post(base, json={"user_id": friend, "permission_level": "admin"})
    assert client.delete(f"{base}/{me}").status_code == 200
    r = client.get(f"/api/shared-folders/{folder_id}")
    assert r.status_code == 403
    assert r.json()["code"] == "ACCESS_DENIED"
    r = client.patch(f"/api/shared-folders/{folder_id}", json={"name": "mine"})
    assert r.status_code == 403
    assert r.json()["code"] == "ADMIN_REQUIRED"


def test_delete_folder(client: TestClient) -> None:
    folder = _create_folder(client)
    r = client.delete(f"/api/shared-folders/{folder['id']}")
    assert r.json()["success"] is True
    assert client.get(f"/api/shared-folders/{folder['id']}").status_code == 403
    assert folder["id"] not in [f["id"] for f in client.get("/api/shared-folders").json()["folders"]]


def test_file_operations_are_audited(client: TestClient) -> None:
    folder = _create_folder(client)
    repo_id = folder["repository"]["id"]
    client.post(f"/api/repositories/{repo_id}/upload", files={"file": ("a.txt", b"abc")}, data={"path": "docs"})
    client.get(f"/api/repositories/{repo_id}/download", params={"path": "docs/a.txt"})
    assert _operation_count(folder["id"]) == 2


def test_folder_can_require_commit_messages(client: TestClient) -> None:
    folder = _create_folder(client, commit_message_required=True)
    url = f"/api/repositories/{folder['repository']['id']}/upload"
    r = client.post(url, files={"file": ("a.txt", b"abc")})
    assert r.status_code == 400
    r = client.post(url, files={"file": ("a.txt", b"abc")}, data={"message": "with reason"})
    assert r.status_code == 200


def _operation_paths(folder_id: int) -> list:
    async def _run() -> list:
        async with get_session() as session:
            result = await session.execute(
                select(FileOperation.operation_type, FileOperation.file_path)
                .where(FileOperation.shared_folder_id == folder_id)
                .order_by(FileOperation.id)
            )
            return [tuple(row) for row in result.all()]

    return asyncio.run(_run())


def test_audit_records_canonical_paths(client: TestClient) -> None:
    folder = _create_folder(client)
    base = f"/api/repositories/{folder['repository']['id']}"
    client.post(f"{base}/upload", files={"file": ("a.txt", b"abc")}, data={"path": "/docs/"})
    assert client.get(f"{base}/download", params={"path": "/docs//a.txt"}).status_code == 200
    assert client.post(f"{base}/move", json={"source": "/docs/a.txt", "destination": "docs\\b.txt"}).status_code == 200
    r = client.request("DELETE", f"{base}/files", json={"path": "/docs/b.txt/"})
    assert r.status_code == 200
    assert _operation_paths(folder["id"]) == [
        ("upload", "docs/a.txt"),
        ("download", "docs/a.txt"),
        ("rename", "docs/a.txt -> docs/b.txt"),
        ("delete", "docs/b.txt"),
    ]
