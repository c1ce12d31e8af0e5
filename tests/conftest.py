import pytest

import library_app.database as database
from library_app.auth import AuthService
from library_app.circulation import Circulation
from library_app.fine_ledger import FineLedger
from library_app.library import Library
from library_app.members import MemberDirectory
from library_app.reports import ReportService
from library_app.user import UserRole


@pytest.fixture(autouse=True)
def db_file(tmp_path, request, monkeypatch):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    database.initialize_database()
    yield path


@pytest.fixture
def lib():
    return Library()


@pytest.fixture
def circulation():
    return Circulation()


@pytest.fixture
def ledger():
    return FineLedger()


@pytest.fixture
def directory():
    return MemberDirectory()


@pytest.fixture
def reports():
    return ReportService()


@pytest.fixture
def auth():
    return AuthService()


@pytest.fixture
def member(auth):
    return auth.register("Ada Member", "ada@example.com", "secret123")


@pytest.fixture
def admin(auth):
    return auth.register("Root Admin", "admin@example.com", "secret123", role=UserRole.ADMIN.value)


@pytest.fixture
def book(lib):
    return lib.add_book("B-001", "Dune", "Frank Herbert", total_copies=2, categories=["Sci-Fi"])
