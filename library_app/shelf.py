from __future__ import annotations


class BookShelf:
    """Kitaplar için fiziksel konum grubu. Kapasite yalnızca doluluk yüzdesi için kullanılır."""

    def __init__(self, id: str, name: str, location: str, capacity: int = 100,
                 description: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None, book_count: int = 0) -> None:
        self.id = id
        self.name = name.strip()
        self.location = location.strip()
        self.capacity = int(capacity)
        self.description = description
        self.created_at = created_at
        self.updated_at = updated_at
        # Türetilmiş alan; yalnızca listeleme sorgularında doldurulur
        self.book_count = int(book_count or 0)

    @property
    def usage_percent(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return round(self.book_count / self.capacity * 100, 1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "description": self.description,
            "capacity": self.capacity,
            "book_count": self.book_count,
            "usage_percent": self.usage_percent,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "BookShelf":
        return BookShelf(
            id=data["id"],
            name=data["name"],
            location=data["location"],
            capacity=data.get("capacity", 100),
            description=data.get("description"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            book_count=data.get("book_count", 0),
        )
