import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from library_app.borrow_record import BorrowRecord, BorrowStatus, ON_LOAN_STATUSES
from library_app.config import settings
from library_app.database import get_db_connection, new_id, parse_iso, to_iso, utcnow
from library_app.errors import (
    AccessDeniedError,
    InvalidTransitionError,
    NoCopiesAvailableError,
    NotFoundError,
    ValidationError,
)
from library_app.fine import Fine
from library_app.user import UserRole

logger = logging.getLogger(__name__)

RECORD_SELECT = """
    SELECT r.*, b.name AS book_name, b.author AS book_author,
           u.name AS member_name, u.email AS member_email
    FROM borrow_records r
    JOIN books b ON b.id = r.book_id
    JOIN users u ON u.id = r.member_id
"""

# Yönetici ödünç listesi için durum filtreleri
STATUS_FILTERS = ("all", "active", "pending", "returned", "rejected", "overdue")


def fine_description(days: int) -> str:
    return f"Overdue fine for {days} days ({settings.fine_per_day}/day)"


class Circulation:
    """Ödünç isteği yaşam döngüsü: istek, onay/red, iptal, iade ve doğrudan atama.

    Çok adımlı geçişler (onay, atama, iade) tek bir SQLite işleminde çalışır.
    Kopya azaltma koşulludur (available_copies > 0), bu yüzden son kopya için
    eşzamanlı iki onaydan yalnızca biri başarılı olur.
    """

    # ------------------------- Üye işlemleri ------------------------- #
    def request_borrow(self, book_id: str, member_id: str, days: Optional[int] = None,
                       now: Optional[datetime] = None, notes: Optional[str] = None) -> BorrowRecord:
        """Bekleyen bir ödünç kaydı ekle. Yalnızca stokta olan kitaplar istenebilir; kopya sayısı değişmez."""
        days = settings.default_borrow_days if days is None else int(days)
        if days <= 0:
            raise ValidationError("Borrow period must be at least one day")
        now = now or utcnow()

        conn = get_db_connection()
        try:
            self._require_borrower(conn, member_id)
            row = conn.execute("SELECT available_copies FROM books WHERE id = ?", (book_id,)).fetchone()
            if not row:
                raise NotFoundError("Book not found")
            # Stok onayda yeniden kontrol edilir
            if row["available_copies"] <= 0:
                raise NoCopiesAvailableError("No copies available")

            record = BorrowRecord(
                id=new_id(), book_id=book_id, member_id=member_id,
                borrowed_at=to_iso(now), due_date=to_iso(now + timedelta(days=days)),
                status=BorrowStatus.PENDING.value, notes=notes,
                created_at=to_iso(now), updated_at=to_iso(now),
            )
            self._insert_record(conn, record)
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Borrow requested: record={record.id} book={book_id} member={member_id} days={days}")
        return self.get_record(record.id)

    def cancel(self, record_id: str, member_id: str) -> bool:
        """Üyenin kendi bekleyen isteğini sil. Bekleyen değilse hiçbir şey yapmaz."""
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "DELETE FROM borrow_records WHERE id = ? AND member_id = ? AND status = 'pending'",
                (record_id, member_id)
            )
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()
        if deleted:
            logger.info(f"Borrow request cancelled: record={record_id}")
        return deleted

    # ------------------------- Yönetici işlemleri ------------------------- #
    def approve(self, record_id: str, now: Optional[datetime] = None) -> BorrowRecord:
        """pending -> borrowed; kitabın mevcut kopyası bir azalır (tek işlem)."""
        stamp = to_iso(now or utcnow())
        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            record = self._fetch_record(conn, record_id)
            cursor = conn.execute(
                "UPDATE borrow_records SET status = 'borrowed', updated_at = ? WHERE id = ? AND status = 'pending'",
                (stamp, record_id)
            )
            if cursor.rowcount == 0:
                raise InvalidTransitionError(f"Cannot approve a {record.status} request")
            self._take_copy(conn, record.book_id, stamp)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Borrow approved: record={record_id} book={record.book_id}")
        return self.get_record(record_id)

    def reject(self, record_id: str, now: Optional[datetime] = None) -> BorrowRecord:
        """pending -> rejected; kopya sayısı değişmez."""
        stamp = to_iso(now or utcnow())
        conn = get_db_connection()
        try:
            record = self._fetch_record(conn, record_id)
            cursor = conn.execute(
                "UPDATE borrow_records SET status = 'rejected', updated_at = ? WHERE id = ? AND status = 'pending'",
                (stamp, record_id)
            )
            if cursor.rowcount == 0:
                raise InvalidTransitionError(f"Cannot reject a {record.status} request")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Borrow rejected: record={record_id}")
        return self.get_record(record_id)

    def mark_returned(self, record_id: str, now: Optional[datetime] = None) -> Tuple[BorrowRecord, Optional[Fine]]:
        """Ödüncü iade edildi olarak işaretle.

        Vade tarihinden en az bir tam gün sonra iade edilirse gün başına ceza
        kaydı eklenir. Kopya sayısı bir artar (toplam kopyayı aşmadan).
        """
        now = now or utcnow()
        stamp = to_iso(now)
        fine = None
        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            record = self._fetch_record(conn, record_id)
            if record.status not in ON_LOAN_STATUSES:
                raise InvalidTransitionError(f"Cannot return a {record.status} record")
            conn.execute(
                "UPDATE borrow_records SET status = 'returned', returned_at = ?, updated_at = ? WHERE id = ?",
                (stamp, stamp, record_id)
            )

            days = record.overdue_days(now)
            if days > 0:
                fine = Fine(
                    id=new_id(), borrow_record_id=record.id, member_id=record.member_id,
                    amount=days * settings.fine_per_day, description=fine_description(days),
                    created_at=stamp, updated_at=stamp,
                )
                conn.execute("""
                    INSERT INTO fines (id, borrow_record_id, member_id, amount, paid, paid_at, description, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, NULL, ?, ?, ?)
                """, (fine.id, fine.borrow_record_id, fine.member_id, fine.amount, fine.description,
                      fine.created_at, fine.updated_at))

            conn.execute("""
                UPDATE books SET available_copies = MIN(available_copies + 1, total_copies), updated_at = ?
                WHERE id = ?
            """, (stamp, record.book_id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        if fine:
            logger.info(f"Fine created: record={record_id} member={fine.member_id} amount={fine.amount}")
        logger.info(f"Book returned: record={record_id} book={record.book_id}")
        return self.get_record(record_id), fine

    def assign(self, book_id: str, member_id: str, due_date: Optional[Any] = None,
               now: Optional[datetime] = None, notes: Optional[str] = None) -> BorrowRecord:
        """Bir kitabı doğrudan üyeye ver: kayıt 'borrowed' olarak eklenir ve kopya bir azalır."""
        now = now or utcnow()
        if due_date is None:
            due = now + timedelta(days=settings.default_borrow_days)
        elif isinstance(due_date, datetime):
            due = due_date
        else:
            try:
                due = parse_iso(str(due_date))
            except ValueError as e:
                raise ValidationError(f"Invalid due date: {due_date}") from e
        if to_iso(due) <= to_iso(now):
            raise ValidationError("Due date must be in the future")

        stamp = to_iso(now)
        record = BorrowRecord(
            id=new_id(), book_id=book_id, member_id=member_id, borrowed_at=stamp,
            due_date=to_iso(due), status=BorrowStatus.BORROWED.value, notes=notes,
            created_at=stamp, updated_at=stamp,
        )
        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._require_borrower(conn, member_id)
            self._take_copy(conn, book_id, stamp)
            self._insert_record(conn, record)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Book assigned: record={record.id} book={book_id} member={member_id}")
        return self.get_record(record.id)

    def mark_overdue(self, now: Optional[datetime] = None) -> int:
        """Vadesi geçmiş 'borrowed' kayıtlarını kalıcı olarak 'overdue' yap. Güncellenen sayıyı döndürür."""
        stamp = to_iso(now or utcnow())
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE borrow_records SET status = 'overdue', updated_at = ? WHERE status = 'borrowed' AND due_date < ?",
                (stamp, stamp)
            )
            conn.commit()
            count = cursor.rowcount
        finally:
            conn.close()
        if count:
            logger.info(f"Marked {count} borrow records overdue")
        return count

    # ------------------------- Okuma ------------------------- #
    def find_record(self, record_id: str) -> Optional[BorrowRecord]:
        conn = get_db_connection()
        try:
            row = conn.execute(RECORD_SELECT + " WHERE r.id = ?", (record_id,)).fetchone()
            return BorrowRecord.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_record(self, record_id: str) -> BorrowRecord:
        record = self.find_record(record_id)
        if not record:
            raise NotFoundError("Borrow record not found")
        return record

    def list_records(self, search: Optional[str] = None, status: str = "all",
                     member_id: Optional[str] = None, now: Optional[datetime] = None) -> List[BorrowRecord]:
        """Kayıtları en yeniden eskiye listele.

        'active' ödünçte olanları (borrowed/overdue), 'overdue' ise etkin olarak
        gecikmiş olanları döndürür; diğer filtreler saklanan durumla eşleşir.
        """
        if status not in STATUS_FILTERS:
            raise ValidationError(f"Invalid status filter. Allowed: {', '.join(STATUS_FILTERS)}")
        now = now or utcnow()

        clauses = []
        params: List[Any] = []
        if member_id:
            clauses.append("r.member_id = ?")
            params.append(member_id)
        if search and search.strip():
            like = f"%{search.strip()}%"
            clauses.append("(b.name LIKE ? OR u.name LIKE ? OR u.email LIKE ?)")
            params.extend([like, like, like])
        if status == "active":
            clauses.append("r.status IN ('borrowed', 'overdue')")
        elif status == "overdue":
            clauses.append("(r.status = 'overdue' OR (r.status = 'borrowed' AND r.due_date < ?))")
            params.append(to_iso(now))
        elif status != "all":
            clauses.append("r.status = ?")
            params.append(status)

        sql = RECORD_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY r.created_at DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [BorrowRecord.from_dict(dict(row)) for row in rows]

    def member_books(self, member_id: str) -> List[BorrowRecord]:
        """Üyenin şu anda elinde olan kitapları, vade tarihine göre."""
        records = self.list_records(status="active", member_id=member_id)
        return sorted(records, key=lambda r: r.due_date)

    def member_history(self, member_id: str) -> List[BorrowRecord]:
        return self.list_records(member_id=member_id)

    def overview(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        records = self.list_records(now=now)
        counts = {"total": len(records), "active": 0, "pending": 0, "overdue": 0, "returned": 0, "rejected": 0}
        for record in records:
            if record.status in ON_LOAN_STATUSES:
                counts["active"] += 1
            if record.is_overdue(now):
                counts["overdue"] += 1
            if record.status in ("pending", "returned", "rejected"):
                counts[record.status] += 1
        return counts

    # ------------------------- Yardımcılar ------------------------- #
    @staticmethod
    def _fetch_record(conn: sqlite3.Connection, record_id: str) -> BorrowRecord:
        row = conn.execute("SELECT * FROM borrow_records WHERE id = ?", (record_id,)).fetchone()
        if not row:
            raise NotFoundError("Borrow record not found")
        return BorrowRecord.from_dict(dict(row))

    @staticmethod
    def _require_borrower(conn: sqlite3.Connection, member_id: str) -> None:
        row = conn.execute("SELECT role FROM users WHERE id = ?", (member_id,)).fetchone()
        if not row:
            raise NotFoundError("Member not found")
        if row["role"] not in (UserRole.ADMIN.value, UserRole.MEMBER.value):
            raise AccessDeniedError("This account is not allowed to borrow books")

    @staticmethod
    def _take_copy(conn: sqlite3.Connection, book_id: str, stamp: str) -> None:
        """Koşullu azaltma: kopya kalmadıysa hiçbir satır güncellenmez."""
        cursor = conn.execute("""
            UPDATE books SET available_copies = available_copies - 1, updated_at = ?
            WHERE id = ? AND available_copies > 0
        """, (stamp, book_id))
        if cursor.rowcount == 0:
            if not conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone():
                raise NotFoundError("Book not found")
            raise NoCopiesAvailableError("No copies available")

    @staticmethod
    def _insert_record(conn: sqlite3.Connection, record: BorrowRecord) -> None:
        conn.execute("""
            INSERT INTO borrow_records (id, book_id, member_id, borrowed_at, due_date, returned_at, status, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (record.id, record.book_id, record.member_id, record.borrowed_at, record.due_date,
              record.returned_at, record.status, record.notes, record.created_at, record.updated_at))
