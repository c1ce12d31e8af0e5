from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from library_app.database import parse_iso, utcnow


class BorrowStatus(str, Enum):
    """Ödünç kaydı durumları"""
    PENDING = "pending"
    BORROWED = "borrowed"
    REJECTED = "rejected"
    RETURNED = "returned"
    OVERDUE = "overdue"


# İade edilebilir (kopyası üyede olan) durumlar
ON_LOAN_STATUSES = (BorrowStatus.BORROWED.value, BorrowStatus.OVERDUE.value)


class BorrowRecord:
    """Bir üyenin bir kitap kopyası için yaptığı tek bir istek/ödünç."""

    def __init__(self, id: str, book_id: str, member_id: str, borrowed_at: str, due_date: str,
                 status: str = BorrowStatus.PENDING.value, returned_at: str | None = None,
                 notes: str | None = None, created_at: str | None = None, updated_at: str | None = None,
                 book_name: str | None = None, book_author: str | None = None,
                 member_name: str | None = None, member_email: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.member_id = member_id
        self.borrowed_at = borrowed_at
        self.due_date = due_date
        self.status = status
        self.returned_at = returned_at
        self.notes = notes
        self.created_at = created_at
        self.updated_at = updated_at
        # JOIN ile gelen görüntüleme alanları
        self.book_name = book_name
        self.book_author = book_author
        self.member_name = member_name
        self.member_email = member_email

    @property
    def due(self) -> datetime:
        return parse_iso(self.due_date)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Kayıt gecikmiş mi? Saklanan 'overdue' durumu veya okuma anında hesaplanan gecikme."""
        if self.status == BorrowStatus.OVERDUE.value:
            return True
        if self.status != BorrowStatus.BORROWED.value:
            return False
        return (now or utcnow()) > self.due

    def effective_status(self, now: Optional[datetime] = None) -> str:
        if self.is_overdue(now):
            return BorrowStatus.OVERDUE.value
        return self.status

    def overdue_days(self, now: Optional[datetime] = None) -> int:
        """Vade tarihinden bu yana geçen tam gün sayısı (aşağı yuvarlanır)."""
        current = now or utcnow()
        due = self.due
        if current <= due:
            return 0
        return (current - due).days

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "borrowed_at": self.borrowed_at,
            "due_date": self.due_date,
            "returned_at": self.returned_at,
            "status": self.status,
            "effective_status": self.effective_status(now),
            "is_overdue": self.is_overdue(now),
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "book_name": self.book_name,
            "book_author": self.book_author,
            "member_name": self.member_name,
            "member_email": self.member_email,
        }

    @staticmethod
    def from_dict(data: dict) -> "BorrowRecord":
        return BorrowRecord(
            id=data["id"],
            book_id=data["book_id"],
            member_id=data["member_id"],
            borrowed_at=data["borrowed_at"],
            due_date=data["due_date"],
            status=data.get("status", BorrowStatus.PENDING.value),
            returned_at=data.get("returned_at"),
            notes=data.get("notes"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            book_name=data.get("book_name"),
            book_author=data.get("book_author"),
            member_name=data.get("member_name"),
            member_email=data.get("member_email"),
        )
