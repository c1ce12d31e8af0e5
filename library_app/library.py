import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import library_app.database as database
from library_app.book import Book
from library_app.config import settings
from library_app.database import get_db_connection, initialize_database, new_id, to_iso, utcnow
from library_app.errors import DuplicateError, NotFoundError, ValidationError, UNIQUE_VIOLATION
from library_app.shelf import BookShelf
from library_app.validators import CatalogValidator, TextValidator

logger = logging.getLogger(__name__)

BOOK_COLUMNS = """
    id, uid, name, author, description, categories, shelf_id, total_copies,
    available_copies, cover_image, isbn, publisher, published_year, created_at, updated_at
"""

_UPDATABLE_BOOK_FIELDS = (
    "uid", "name", "author", "description", "categories", "shelf_id", "total_copies",
    "available_copies", "cover_image", "isbn", "publisher", "published_year",
)
_UPDATABLE_SHELF_FIELDS = ("name", "location", "description", "capacity")


class Library:
    """Kitap kataloğunu ve rafları yönetir."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Testlerin (ve çağıranların) database.DATABASE_FILE'ı başlatmadan önce geçersiz kılmasına izin ver
        if db_file:
            database.DATABASE_FILE = db_file
            initialize_database()

    # ------------------------- Katalog ------------------------- #
    def add_book(self, uid: str, name: str, author: str, *, total_copies: int = 1,
                 available_copies: Optional[int] = None, description: Optional[str] = None,
                 categories: Optional[List[str]] = None, shelf_id: Optional[str] = None,
                 cover_image: Optional[str] = None, isbn: Optional[str] = None,
                 publisher: Optional[str] = None, published_year: Optional[int] = None) -> Book:
        """Kataloğa yeni bir kitap ekleyin. UID benzersiz olmalıdır."""
        if TextValidator.is_blank(uid):
            raise ValidationError("Book UID is required")
        if TextValidator.is_blank(name):
            raise ValidationError("Book name is required")
        if TextValidator.is_blank(author):
            raise ValidationError("Author is required")

        now = to_iso(utcnow())
        book = Book(
            id=new_id(), uid=uid, name=name, author=author, total_copies=total_copies,
            available_copies=available_copies, description=description,
            categories=CatalogValidator.clean_categories(categories), shelf_id=shelf_id or None,
            cover_image=cover_image, isbn=CatalogValidator.clean_isbn(isbn), publisher=publisher,
            published_year=published_year, created_at=now, updated_at=now,
        )
        CatalogValidator.check_copies(book.total_copies, book.available_copies)

        conn = get_db_connection()
        try:
            conn.execute(f"""
                INSERT INTO books ({BOOK_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                book.id, book.uid, book.name, book.author, book.description,
                json.dumps(book.categories), book.shelf_id, book.total_copies,
                book.available_copies, book.cover_image, book.isbn, book.publisher,
                book.published_year, book.created_at, book.updated_at,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(e) from e
        finally:
            conn.close()
        logger.info(f"Book added: uid={book.uid} copies={book.total_copies}")
        return book

    def find_book(self, book_id: str) -> Optional[Book]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_book(self, book_id: str) -> Book:
        book = self.find_book(book_id)
        if not book:
            raise NotFoundError("Book not found")
        return book

    def get_book_with_shelf(self, book_id: str) -> Tuple[Book, Optional[BookShelf]]:
        """Kitabı ve (varsa) bulunduğu rafı döndür."""
        book = self.get_book(book_id)
        shelf = self.find_shelf(book.shelf_id) if book.shelf_id else None
        return book, shelf

    def list_books(self, query: Optional[str] = None, *, category: Optional[str] = None,
                   shelf_id: Optional[str] = None, available_only: bool = False,
                   limit: Optional[int] = None) -> List[Book]:
        """Kitapları ada göre sıralı listele (her çağrıda taze).

        Arama ad, yazar, UID ve ISBN alanlarında büyük/küçük harf duyarsız yapılır.
        Kategori filtresi JSON dizisi üzerinde Python tarafında uygulanır.
        """
        clauses = []
        params: List[Any] = []
        if query and query.strip():
            like = f"%{query.strip()}%"
            clauses.append("(name LIKE ? OR author LIKE ? OR uid LIKE ? OR IFNULL(isbn, '') LIKE ?)")
            params.extend([like, like, like, like])
        if shelf_id:
            clauses.append("shelf_id = ?")
            params.append(shelf_id)
        if available_only:
            clauses.append("available_copies > 0")

        sql = f"SELECT {BOOK_COLUMNS} FROM books"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY name COLLATE NOCASE"

        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        books = [Book.from_dict(dict(row)) for row in rows]
        if category:
            wanted = category.strip().lower()
            books = [b for b in books if any(c.lower() == wanted for c in b.categories)]
        if limit is not None:
            books = books[:limit]
        return books

    def list_categories(self) -> List[str]:
        seen = set()
        for book in self.list_books():
            seen.update(book.categories)
        return sorted(seen, key=str.lower)

    def available_books_snapshot(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Stokta olan kitapların sohbet asistanı için ad/yazar/kategori özeti."""
        conn = get_db_connection()
        try:
            rows = conn.execute(
                "SELECT name, author, categories FROM books WHERE available_copies > 0 LIMIT ?",
                (limit,)
            ).fetchall()
        finally:
            conn.close()
        return [
            {"name": row["name"], "author": row["author"], "categories": json.loads(row["categories"] or "[]")}
            for row in rows
        ]

    def update_book(self, book_id: str, **fields: Any) -> Optional[Book]:
        """Bir kitabın alanlarını güncelleyin. Güncellenmiş kitabı veya bulunamazsa None'ı döndürür.

        total_copies değişip available_copies verilmezse, mevcut kopyalar aynı farkla kaydırılır.
        """
        existing = self.find_book(book_id)
        if not existing:
            return None

        update_fields = {k: v for k, v in fields.items() if k in _UPDATABLE_BOOK_FIELDS and v is not None}
        unknown = set(fields) - set(_UPDATABLE_BOOK_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}")
        if not update_fields:
            raise ValidationError("Nothing to update")

        for key in ("uid", "name", "author"):
            if key in update_fields:
                if TextValidator.is_blank(update_fields[key]):
                    raise ValidationError(f"{key} must not be empty")
                update_fields[key] = update_fields[key].strip()
        if "isbn" in update_fields:
            update_fields["isbn"] = CatalogValidator.clean_isbn(update_fields["isbn"])
        if "categories" in update_fields:
            update_fields["categories"] = json.dumps(CatalogValidator.clean_categories(update_fields["categories"]))
        if "shelf_id" in update_fields and not update_fields["shelf_id"]:
            update_fields["shelf_id"] = None

        total = int(update_fields.get("total_copies", existing.total_copies))
        if "available_copies" in update_fields:
            available = int(update_fields["available_copies"])
        else:
            available = max(0, existing.available_copies + (total - existing.total_copies))
            if total != existing.total_copies:
                update_fields["available_copies"] = available
        CatalogValidator.check_copies(total, available)

        update_fields["updated_at"] = to_iso(utcnow())
        set_clause = ", ".join([f"{field} = ?" for field in update_fields.keys()])
        params = list(update_fields.values()) + [book_id]

        conn = get_db_connection()
        try:
            conn.execute(f"UPDATE books SET {set_clause} WHERE id = ?", params)
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(e) from e
        finally:
            conn.close()

        # Yeni getirilmiş güncellenmiş kaydı döndür
        return self.find_book(book_id)

    def remove_book(self, book_id: str) -> bool:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------- Raflar ------------------------- #
    def add_shelf(self, name: str, location: str, capacity: Optional[int] = None,
                  description: Optional[str] = None) -> BookShelf:
        if TextValidator.is_blank(name):
            raise ValidationError("Shelf name is required")
        if TextValidator.is_blank(location):
            raise ValidationError("Shelf location is required")
        capacity = settings.default_shelf_capacity if capacity is None else int(capacity)
        if capacity <= 0:
            raise ValidationError("Capacity must be positive")

        now = to_iso(utcnow())
        shelf = BookShelf(id=new_id(), name=name, location=location, capacity=capacity,
                          description=description, created_at=now, updated_at=now)
        conn = get_db_connection()
        try:
            conn.execute("""
                INSERT INTO book_shelves (id, name, location, description, capacity, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (shelf.id, shelf.name, shelf.location, shelf.description, shelf.capacity,
                  shelf.created_at, shelf.updated_at))
            conn.commit()
        finally:
            conn.close()
        return shelf

    def find_shelf(self, shelf_id: str) -> Optional[BookShelf]:
        conn = get_db_connection()
        try:
            row = conn.execute("""
                SELECT s.*, (SELECT COUNT(*) FROM books b WHERE b.shelf_id = s.id) AS book_count
                FROM book_shelves s WHERE s.id = ?
            """, (shelf_id,)).fetchone()
            return BookShelf.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def list_shelves(self) -> List[BookShelf]:
        """Rafları kitap sayılarıyla birlikte ada göre listele."""
        conn = get_db_connection()
        try:
            rows = conn.execute("""
                SELECT s.*, COUNT(b.id) AS book_count
                FROM book_shelves s
                LEFT JOIN books b ON b.shelf_id = s.id
                GROUP BY s.id
                ORDER BY s.name COLLATE NOCASE
            """).fetchall()
            return [BookShelf.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def update_shelf(self, shelf_id: str, **fields: Any) -> Optional[BookShelf]:
        if not self.find_shelf(shelf_id):
            return None
        update_fields = {k: v for k, v in fields.items() if k in _UPDATABLE_SHELF_FIELDS and v is not None}
        if not update_fields:
            raise ValidationError("Nothing to update")
        if "capacity" in update_fields and int(update_fields["capacity"]) <= 0:
            raise ValidationError("Capacity must be positive")
        for key in ("name", "location"):
            if key in update_fields and TextValidator.is_blank(update_fields[key]):
                raise ValidationError(f"{key} must not be empty")

        update_fields["updated_at"] = to_iso(utcnow())
        set_clause = ", ".join([f"{field} = ?" for field in update_fields.keys()])
        conn = get_db_connection()
        try:
            conn.execute(f"UPDATE book_shelves SET {set_clause} WHERE id = ?",
                         list(update_fields.values()) + [shelf_id])
            conn.commit()
        finally:
            conn.close()
        return self.find_shelf(shelf_id)

    def remove_shelf(self, shelf_id: str) -> bool:
        """Rafı sil; raftaki kitapların shelf_id'si NULL olur."""
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM book_shelves WHERE id = ?", (shelf_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def shelf_summary(self) -> Dict[str, Any]:
        shelves = self.list_shelves()
        total_capacity = sum(s.capacity for s in shelves)
        shelved = sum(s.book_count for s in shelves)
        return {
            "total_shelves": len(shelves),
            "total_capacity": total_capacity,
            "books_shelved": shelved,
            "overall_usage_percent": round(shelved / total_capacity * 100, 1) if total_capacity else 0.0,
        }

    # ------------------------- İstatistikler ------------------------- #
    def get_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Pano istatistiklerini alın."""
        now_iso = to_iso(now or utcnow())
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*), IFNULL(SUM(total_copies), 0), IFNULL(SUM(available_copies), 0) FROM books")
            total_books, total_copies, available_copies = cursor.fetchone()

            cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'member'")
            total_members = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = 'borrowed'")
            active_borrows = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = 'pending'")
            pending_requests = cursor.fetchone()[0]

            cursor.execute("""
                SELECT COUNT(*) FROM borrow_records
                WHERE status = 'overdue' OR (status = 'borrowed' AND due_date < ?)
            """, (now_iso,))
            overdue_borrows = cursor.fetchone()[0]

            return {
                "total_books": total_books,
                "total_copies": total_copies,
                "available_copies": available_copies,
                "total_members": total_members,
                "active_borrows": active_borrows,
                "pending_requests": pending_requests,
                "overdue_borrows": overdue_borrows,
            }
        finally:
            conn.close()

    # ------------------------- Yardımcılar ------------------------- #
    @staticmethod
    def _translate_integrity_error(e: sqlite3.IntegrityError) -> Exception:
        message = str(e)
        if "books.uid" in message:
            return DuplicateError("This UID already exists", UNIQUE_VIOLATION)
        if "FOREIGN KEY" in message:
            return NotFoundError("Shelf not found")
        return ValidationError(message)

    def close(self) -> None:
        """Uyumluluk yardımcısı: işlem başına bağlantı açıldığından kapatılacak bir şey yoktur."""
        return None
