from __future__ import annotations

import json

from library_app.config import settings


class Book:
    """Katalogdaki tek bir kitap kaydını ve kopya sayılarını temsil eder."""

    def __init__(self, id: str, uid: str, name: str, author: str, total_copies: int = 1,
                 available_copies: int | None = None, description: str | None = None,
                 categories: list | None = None, shelf_id: str | None = None,
                 cover_image: str | None = None, isbn: str | None = None, publisher: str | None = None,
                 published_year: int | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.uid = uid.strip()
        self.name = name.strip()
        self.author = author.strip()
        self.description = description
        self.categories = categories or []
        self.shelf_id = shelf_id
        self.total_copies = int(total_copies)
        # Yeni kitaplarda tüm kopyalar ödünç verilebilir
        self.available_copies = self.total_copies if available_copies is None else int(available_copies)
        self.cover_image = cover_image
        self.isbn = isbn
        self.publisher = publisher
        self.published_year = published_year
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:
        return f"{self.name} by {self.author} (UID: {self.uid})"

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    @property
    def stock_status(self) -> str:
        if self.available_copies <= 0:
            return "Out of Stock"
        if self.available_copies < settings.low_stock_threshold:
            return "Low Stock"
        return "In Stock"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "name": self.name,
            "author": self.author,
            "description": self.description,
            "categories": self.categories,
            "shelf_id": self.shelf_id,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "cover_image": self.cover_image,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "published_year": self.published_year,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite'tan gelen JSON dize alanını Python listesine normalleştirin
        cats = data.get("categories")
        if isinstance(cats, str):
            try:
                cats = json.loads(cats)
            except ValueError:
                cats = [cats] if cats else []

        return Book(
            id=data["id"],
            uid=data["uid"],
            name=data["name"],
            author=data["author"],
            total_copies=data.get("total_copies", 1),
            available_copies=data.get("available_copies"),
            description=data.get("description"),
            categories=cats,
            shelf_id=data.get("shelf_id"),
            cover_image=data.get("cover_image"),
            isbn=data.get("isbn"),
            publisher=data.get("publisher"),
            published_year=data.get("published_year"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
