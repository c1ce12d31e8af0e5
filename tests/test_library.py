from datetime import datetime, timedelta, timezone

import pytest

from library_app.errors import DuplicateError, NotFoundError, ValidationError, UNIQUE_VIOLATION
from library_app.library import Library

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_add_list_and_find(lib):
    assert lib.list_books() == []

    book = lib.add_book("U-1", "Ulysses", "James Joyce", total_copies=3, isbn="978-0-19-953567-5")

    assert lib.find_book(book.id) is not None
    assert len(lib.list_books()) == 1
    assert lib.list_books()[0].name == "Ulysses"
    assert book.available_copies == 3
    assert book.isbn == "9780199535675"


def test_add_duplicate_uid_reports_unique_violation(lib):
    lib.add_book("U-1", "Test Book", "Test Author")

    with pytest.raises(DuplicateError) as exc:
        lib.add_book("U-1", "Another", "Someone")

    assert exc.value.code == UNIQUE_VIOLATION
    assert exc.value.message == "This UID already exists"
    assert len(lib.list_books()) == 1


def test_add_book_validation(lib):
    with pytest.raises(ValidationError):
        lib.add_book(" ", "Name", "Author")
    with pytest.raises(ValidationError):
        lib.add_book("U-2", "", "Author")
    with pytest.raises(ValidationError):
        lib.add_book("U-2", "Name", "Author", total_copies=-1)
    with pytest.raises(ValidationError):
        lib.add_book("U-2", "Name", "Author", total_copies=1, available_copies=2)
    with pytest.raises(ValidationError):
        lib.add_book("U-2", "Name", "Author", isbn="123")
    with pytest.raises(NotFoundError):
        lib.add_book("U-2", "Name", "Author", shelf_id="missing-shelf")


def test_persistence_across_instances(lib):
    lib.add_book("S-1", "Sapiens", "Yuval Noah Harari")

    # Yeni örnek SQLite'tan kalıcı veriyi okumalı
    lib2 = Library()
    assert len(lib2.list_books()) == 1
    assert lib2.list_books()[0].name == "Sapiens"


def test_list_books_filters(lib):
    shelf = lib.add_shelf("Fiction A", "Floor 1")
    lib.add_book("A-1", "Dune", "Frank Herbert", categories=["Sci-Fi", "Classic"], shelf_id=shelf.id)
    lib.add_book("A-2", "Emma", "Jane Austen", categories=["Romance"], total_copies=0)
    lib.add_book("A-3", "Brave New World", "Aldous Huxley", categories=["Sci-Fi", "Dystopia"])

    assert [b.name for b in lib.list_books()] == ["Brave New World", "Dune", "Emma"]
    assert [b.name for b in lib.list_books("austen")] == ["Emma"]
    assert [b.name for b in lib.list_books("A-1")] == ["Dune"]
    assert [b.name for b in lib.list_books(category="sci-fi")] == ["Brave New World", "Dune"]
    assert [b.name for b in lib.list_books(shelf_id=shelf.id)] == ["Dune"]
    assert [b.name for b in lib.list_books(available_only=True)] == ["Brave New World", "Dune"]
    assert lib.list_categories() == ["Classic", "Dystopia", "Romance", "Sci-Fi"]


def test_stock_status_labels(lib):
    assert lib.add_book("S-0", "Zero", "A", total_copies=0).stock_status == "Out of Stock"
    assert lib.add_book("S-2", "Two", "A", total_copies=2).stock_status == "Low Stock"
    assert lib.add_book("S-3", "Three", "A", total_copies=3).stock_status == "In Stock"


def test_update_book(lib):
    book = lib.add_book("U-3", "Old Title", "Old Author", total_copies=2)

    updated = lib.update_book(book.id, name="New Title", categories=["Drama", "Drama", " "])
    assert updated.name == "New Title"
    assert updated.author == "Old Author"
    assert updated.categories == ["Drama"]

    # Toplam değişince mevcut kopyalar aynı farkla kayar
    updated = lib.update_book(book.id, total_copies=5)
    assert (updated.total_copies, updated.available_copies) == (5, 5)

    assert lib.update_book("missing", name="X") is None
    with pytest.raises(ValidationError):
        lib.update_book(book.id)
    with pytest.raises(ValidationError):
        lib.update_book(book.id, available_copies=6)
    with pytest.raises(ValidationError):
        lib.update_book(book.id, colour="red")


def test_update_book_uid_conflict(lib):
    lib.add_book("U-4", "One", "A")
    other = lib.add_book("U-5", "Two", "B")

    with pytest.raises(DuplicateError):
        lib.update_book(other.id, uid="U-4")


def test_remove_book(lib):
    book = lib.add_book("R-1", "Test", "Author")
    assert lib.remove_book(book.id) is True
    assert lib.remove_book(book.id) is False


def test_get_book_with_shelf(lib):
    shelf = lib.add_shelf("Reference", "Floor 2", capacity=10)
    book = lib.add_book("G-1", "Atlas", "Various", shelf_id=shelf.id)
    loose = lib.add_book("G-2", "Loose", "Nobody")

    found, found_shelf = lib.get_book_with_shelf(book.id)
    assert found.id == book.id
    assert found_shelf.name == "Reference"
    assert lib.get_book_with_shelf(loose.id)[1] is None
    with pytest.raises(NotFoundError):
        lib.get_book_with_shelf("missing")


def test_shelves_crud_and_usage(lib):
    shelf = lib.add_shelf("Science", "Floor 3", capacity=4)
    default = lib.add_shelf("Overflow", "Basement")
    assert default.capacity == 100

    lib.add_book("H-1", "Cosmos", "Carl Sagan", shelf_id=shelf.id)
    lib.add_book("H-2", "Brief History", "Stephen Hawking", shelf_id=shelf.id)

    listed = {s.name: s for s in lib.list_shelves()}
    assert listed["Science"].book_count == 2
    assert listed["Science"].usage_percent == 50.0
    assert listed["Overflow"].book_count == 0

    summary = lib.shelf_summary()
    assert summary["total_shelves"] == 2
    assert summary["total_capacity"] == 104
    assert summary["books_shelved"] == 2

    updated = lib.update_shelf(shelf.id, capacity=8, location="Floor 4")
    assert updated.capacity == 8
    assert updated.location == "Floor 4"
    assert lib.update_shelf("missing", name="X") is None
    with pytest.raises(ValidationError):
        lib.update_shelf(shelf.id, capacity=0)
    with pytest.raises(ValidationError):
        lib.add_shelf("", "Nowhere")


def test_remove_shelf_unassigns_books(lib):
    shelf = lib.add_shelf("Temp", "Floor 1")
    book = lib.add_book("T-1", "Temporary", "Author", shelf_id=shelf.id)

    assert lib.remove_shelf(shelf.id) is True
    assert lib.find_book(book.id).shelf_id is None
    assert lib.remove_shelf(shelf.id) is False


def test_available_books_snapshot(lib):
    lib.add_book("C-1", "In Stock", "A", categories=["Poetry"])
    lib.add_book("C-2", "Gone", "B", total_copies=0)

    snapshot = lib.available_books_snapshot()
    assert snapshot == [{"name": "In Stock", "author": "A", "categories": ["Poetry"]}]


def test_statistics(lib, circulation, member, admin):
    book = lib.add_book("D-1", "Dune", "Frank Herbert", total_copies=3)
    circulation.assign(book.id, member.id, due_date=NOW + timedelta(days=1), now=NOW)
    circulation.request_borrow(book.id, member.id, now=NOW)

    stats = lib.get_statistics(now=NOW + timedelta(days=2))
    assert stats["total_books"] == 1
    assert stats["total_copies"] == 3
    assert stats["available_copies"] == 2
    assert stats["total_members"] == 1
    assert stats["active_borrows"] == 1
    assert stats["pending_requests"] == 1
    assert stats["overdue_borrows"] == 1
