from __future__ import annotations

from typing import Any, Dict


class Fine:
    """Bir ödünç kaydına bağlı parasal ceza. Yalnızca 'paid' ve 'paid_at' değişebilir."""

    def __init__(self, id: str, borrow_record_id: str, member_id: str, amount: float,
                 paid: bool = False, paid_at: str | None = None, description: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None,
                 member_name: str | None = None, member_email: str | None = None,
                 book_name: str | None = None) -> None:
        self.id = id
        self.borrow_record_id = borrow_record_id
        self.member_id = member_id
        self.amount = float(amount)
        self.paid = bool(paid)
        self.paid_at = paid_at
        self.description = description
        self.created_at = created_at
        self.updated_at = updated_at
        self.member_name = member_name
        self.member_email = member_email
        self.book_name = book_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "borrow_record_id": self.borrow_record_id,
            "member_id": self.member_id,
            "amount": self.amount,
            "paid": self.paid,
            "paid_at": self.paid_at,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "member_name": self.member_name,
            "member_email": self.member_email,
            "book_name": self.book_name,
        }

    @staticmethod
    def from_dict(data: dict) -> "Fine":
        return Fine(
            id=data["id"],
            borrow_record_id=data["borrow_record_id"],
            member_id=data["member_id"],
            amount=data["amount"],
            paid=data.get("paid", False),
            paid_at=data.get("paid_at"),
            description=data.get("description"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            member_name=data.get("member_name"),
            member_email=data.get("member_email"),
            book_name=data.get("book_name"),
        )
