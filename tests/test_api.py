from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import library_app.api as api_module
from library_app.config import settings
from library_app.database import utcnow
from library_app.user import UserRole


@pytest.fixture
def client():
    with TestClient(api_module.app) as test_client:
        yield test_client


def _login(client, email, password="secret123"):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def member_headers(client):
    response = client.post("/auth/register", json={
        "name": "Ada Member", "email": "ada@example.com", "password": "secret123",
    })
    assert response.status_code == 201
    return _login(client, "ada@example.com")


@pytest.fixture
def admin_headers(client, auth):
    auth.register("Root Admin", "admin@example.com", "secret123", role=UserRole.ADMIN.value)
    return _login(client, "admin@example.com")


@pytest.fixture
def api_book(client, admin_headers):
    response = client.post("/books", headers=admin_headers, json={
        "uid": "API-1", "name": "Dune", "author": "Frank Herbert", "total_copies": 1, "categories": ["Sci-Fi"],
    })
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["db"] is True


def test_register_rejects_short_password(client):
    response = client.post("/auth/register", json={"name": "X", "email": "x@example.com", "password": "123"})
    assert response.status_code == 400


def test_login_with_wrong_password(client, member_headers):
    response = client.post("/auth/login", json={"email": "ada@example.com", "password": "nope-nope"})
    assert response.status_code == 401


def test_requires_authentication(client):
    assert client.get("/books").status_code == 401
    assert client.get("/books", headers={"Authorization": "Bearer bogus"}).status_code == 401


def test_profile_read_and_update(client, member_headers):
    response = client.get("/me", headers=member_headers)
    assert response.json()["email"] == "ada@example.com"
    assert response.json()["role"] == "member"

    response = client.patch("/me", headers=member_headers, json={"name": "Ada Lovelace"})
    assert response.status_code == 200
    assert response.json()["name"] == "Ada Lovelace"


def test_logout_invalidates_token(client, member_headers):
    assert client.post("/auth/logout", headers=member_headers).json() == {"logged_out": True}
    assert client.get("/me", headers=member_headers).status_code == 401


def test_book_crud_is_admin_only(client, member_headers, admin_headers, api_book):
    response = client.post("/books", headers=member_headers, json={"uid": "M-1", "name": "N", "author": "A"})
    assert response.status_code == 403

    response = client.post("/books", headers=admin_headers, json={"uid": "API-1", "name": "N", "author": "A"})
    assert response.status_code == 409
    assert response.json()["detail"] == "This UID already exists"

    response = client.put(f"/books/{api_book['id']}", headers=admin_headers, json={"total_copies": 3})
    assert response.json()["available_copies"] == 3

    response = client.get("/books", headers=member_headers, params={"q": "dune"})
    assert [b["uid"] for b in response.json()] == ["API-1"]
    response = client.get(f"/books/{api_book['id']}", headers=member_headers)
    assert response.json()["shelf"] is None
    assert client.get("/books/categories", headers=member_headers).json() == ["Sci-Fi"]

    assert client.delete(f"/books/{api_book['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/books/{api_book['id']}", headers=member_headers).status_code == 404


def test_privileged_book_insert(client):
    headers = {"X-API-Key": settings.api_key}
    payload = {"uid": "SVC-1", "name": "Kindred", "author": "Octavia Butler", "total_copies": 2}

    response = client.post("/admin/books", headers=headers, json=payload)
    assert response.status_code == 201
    assert response.json()["data"]["uid"] == "SVC-1"
    assert response.json()["data"]["available_copies"] == 2

    response = client.post("/admin/books", headers=headers, json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "This UID already exists", "code": "23505"}


@pytest.mark.parametrize("payload,field", [
    ({"name": "Kindred", "author": "Octavia Butler"}, "uid"),
    ({"uid": "SVC-3", "name": "Kindred", "author": "Octavia Butler", "total_copies": -1}, "total_copies"),
])
def test_privileged_book_insert_rejects_invalid_body(client, payload, field):
    response = client.post("/admin/books", headers={"X-API-Key": settings.api_key}, json=payload)

    assert response.status_code == 400
    body = response.json()
    assert set(body) == {"error", "code"}
    assert body["code"] is None
    assert field in body["error"]


def test_privileged_book_insert_rejects_blank_author(client):
    payload = {"uid": "SVC-4", "name": "Kindred", "author": "  "}
    response = client.post("/admin/books", headers={"X-API-Key": settings.api_key}, json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Author is required", "code": None}


def test_privileged_book_insert_with_invalid_api_key(client):
    payload = {"uid": "SVC-2", "name": "Kindred", "author": "Octavia Butler"}
    assert client.post("/admin/books", headers={"X-API-Key": "invalid-key"}, json=payload).status_code == 403
    assert client.post("/admin/books", json=payload).status_code == 403


def test_borrow_workflow(client, member_headers, admin_headers, api_book):
    response = client.post("/borrows", headers=member_headers, json={"book_id": api_book["id"], "days": 7})
    assert response.status_code == 201
    record = response.json()
    assert record["status"] == "pending"

    pending = client.get("/borrows", headers=admin_headers, params={"status": "pending"}).json()
    assert [r["id"] for r in pending] == [record["id"]]
    assert client.get("/borrows", headers=member_headers).status_code == 403

    response = client.post(f"/borrows/{record['id']}/approve", headers=admin_headers)
    assert response.json()["status"] == "borrowed"
    book = client.get(f"/books/{api_book['id']}", headers=member_headers).json()
    assert book["available_copies"] == 0

    my_books = client.get("/me/books", headers=member_headers).json()
    assert [r["id"] for r in my_books] == [record["id"]]

    response = client.post(f"/borrows/{record['id']}/return", headers=admin_headers)
    assert response.json()["record"]["status"] == "returned"
    assert response.json()["fine"] is None
    book = client.get(f"/books/{api_book['id']}", headers=member_headers).json()
    assert book["available_copies"] == 1

    assert len(client.get("/me/history", headers=member_headers).json()) == 1
    assert client.get("/borrows/overview", headers=admin_headers).json()["returned"] == 1


def test_second_approval_without_copies_is_rejected(client, member_headers, admin_headers, api_book):
    first = client.post("/borrows", headers=member_headers, json={"book_id": api_book["id"]}).json()
    second = client.post("/borrows", headers=admin_headers, json={"book_id": api_book["id"]}).json()
    client.post(f"/borrows/{first['id']}/approve", headers=admin_headers)

    response = client.post(f"/borrows/{second['id']}/approve", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "No copies available"


def test_request_for_out_of_stock_book_is_rejected(client, member_headers, admin_headers):
    book = client.post("/books", headers=admin_headers, json={
        "uid": "EMPTY-1", "name": "Beloved", "author": "Toni Morrison", "total_copies": 0,
    }).json()

    response = client.post("/borrows", headers=member_headers, json={"book_id": book["id"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "No copies available"
    assert client.get("/me/requests", headers=member_headers).json() == []


def test_cancel_pending_request(client, member_headers, api_book):
    record = client.post("/borrows", headers=member_headers, json={"book_id": api_book["id"]}).json()
    assert client.delete(f"/borrows/{record['id']}", headers=member_headers).json() == {"cancelled": True}
    assert client.delete(f"/borrows/{record['id']}", headers=member_headers).json() == {"cancelled": False}


def test_assign_and_mark_overdue(client, admin_headers, member_headers, api_book):
    member_id = client.get("/me", headers=member_headers).json()["id"]
    due = (utcnow() + timedelta(days=3)).isoformat()

    response = client.post("/borrows/assign", headers=admin_headers, json={
        "book_id": api_book["id"], "member_id": member_id, "due_date": due,
    })
    assert response.status_code == 201
    assert response.json()["status"] == "borrowed"

    response = client.post("/borrows/assign", headers=admin_headers, json={
        "book_id": api_book["id"], "member_id": member_id,
    })
    assert response.status_code == 400

    assert client.post("/admin/mark-overdue", headers=admin_headers).json() == {"updated": 0}


def test_fines_visibility_and_payment(client, member_headers, admin_headers, api_book, circulation):
    member_id = client.get("/me", headers=member_headers).json()["id"]
    now = utcnow()
    record = circulation.assign(api_book["id"], member_id, due_date=now + timedelta(days=1), now=now - timedelta(days=1))
    circulation.mark_returned(record.id, now=now + timedelta(days=3))

    response = client.get("/fines", headers=member_headers)
    body = response.json()
    assert len(body["fines"]) == 1
    assert body["totals"] == {"total": 20.0, "unpaid": 20.0, "paid": 0}

    fine_id = body["fines"][0]["id"]
    assert client.post(f"/fines/{fine_id}/pay", headers=member_headers).status_code == 403
    response = client.post(f"/fines/{fine_id}/pay", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["paid"] is True


def test_shelves(client, admin_headers, member_headers):
    response = client.post("/shelves", headers=admin_headers, json={"name": "Science", "location": "Floor 3", "capacity": 4})
    assert response.status_code == 201
    shelf = response.json()
    assert client.post("/shelves", headers=member_headers, json={"name": "X", "location": "Y"}).status_code == 403

    client.post("/books", headers=admin_headers, json={
        "uid": "S-1", "name": "Cosmos", "author": "Carl Sagan", "shelf_id": shelf["id"],
    })
    listed = client.get("/shelves", headers=member_headers).json()
    assert listed[0]["book_count"] == 1
    assert listed[0]["usage_percent"] == 25.0

    response = client.put(f"/shelves/{shelf['id']}", headers=admin_headers, json={"capacity": 10})
    assert response.json()["capacity"] == 10
    assert client.get("/shelves/summary", headers=member_headers).json()["total_capacity"] == 10
    assert client.delete(f"/shelves/{shelf['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/shelves/{shelf['id']}", headers=admin_headers).status_code == 404


def test_members_admin(client, admin_headers, member_headers):
    members = client.get("/members", headers=admin_headers, params={"role": "member"}).json()
    assert [m["email"] for m in members] == ["ada@example.com"]
    assert members[0]["unpaid_fines"] == 0

    response = client.patch(f"/members/{members[0]['id']}/role", headers=admin_headers, json={"role": "viewer"})
    assert response.json()["role"] == "viewer"
    assert client.get("/members", headers=member_headers).status_code == 403


def test_stats_and_reports(client, admin_headers, member_headers, api_book):
    stats = client.get("/stats", headers=member_headers).json()
    assert stats["total_books"] == 1
    assert stats["total_members"] == 1

    summary = client.get("/reports/summary", headers=admin_headers, params={"period": "year"}).json()
    assert summary["total_books"] == 1
    assert summary["popular_books"] == []
    assert client.get("/reports/summary", headers=admin_headers, params={"period": "week"}).status_code == 400

    response = client.get("/reports/export", headers=admin_headers, params={"report_type": "books", "fmt": "csv"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "books-report-" in response.headers["content-disposition"]
    assert response.text.splitlines()[0] == "UID,Name,Author,Categories,Total Copies,Available,Shelf,Location"


def test_chat_requires_messages_array(client):
    assert client.post("/chat", json={}).status_code == 400
    response = client.post("/chat", json={"messages": "hello"})
    assert response.status_code == 400
    assert response.json() == {"error": "Messages array is required"}


def test_chat_forwards_in_stock_books(client, api_book, monkeypatch):
    seen = {}

    async def fake_chat(messages, books):
        seen["messages"] = messages
        seen["books"] = books
        return "Try Dune."

    monkeypatch.setattr(api_module.assistant_service, "chat", fake_chat)
    response = client.post("/chat", json={"messages": [{"role": "user", "content": "sci-fi please"}]})

    assert response.status_code == 200
    assert response.json() == {"message": "Try Dune."}
    assert seen["books"] == [{"name": "Dune", "author": "Frank Herbert", "categories": ["Sci-Fi"]}]


def test_chat_recommendations(client, member_headers, monkeypatch):
    async def fake_recommend(query, books):
        return f"Recommendations for {query}"

    monkeypatch.setattr(api_module.assistant_service, "recommend", fake_recommend)
    response = client.post("/chat/recommendations", headers=member_headers, json={"query": "poetry"})
    assert response.json() == {"message": "Recommendations for poetry"}
