import re
from typing import List, Optional

from library_app.config import settings
from library_app.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TAG_RE = re.compile(r"<[^>]*>")


class ISBNValidator:
    """ISBN-10 / ISBN-13 kontrol toplamı doğrulaması."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[^0-9X]", "", raw.upper())

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if re.fullmatch(r"\d{9}[\dX]", s):
            digits = [10 if ch == "X" else int(ch) for ch in s]
            return sum((10 - i) * d for i, d in enumerate(digits)) % 11 == 0
        if re.fullmatch(r"\d{13}", s):
            weighted = sum(int(ch) * (3 if i % 2 else 1) for i, ch in enumerate(s))
            return weighted % 10 == 0
        return False


class TextValidator:
    """Form alanları için temel metin doğrulamaları."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not text.strip()

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if TextValidator.is_blank(email):
            return False
        return bool(_EMAIL_RE.match(email.strip()))

    @staticmethod
    def validate_password(password: Optional[str]) -> bool:
        return password is not None and len(password) >= settings.min_password_length

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        return _TAG_RE.sub("", text).strip()


class CatalogValidator:
    """Kitap alanlarını temizler; geçersiz değerlerde ValidationError fırlatır."""

    @staticmethod
    def check_copies(total: int, available: int) -> None:
        if total < 0:
            raise ValidationError("Total copies must not be negative")
        if available < 0 or available > total:
            raise ValidationError("Available copies must be between 0 and total copies")

    @staticmethod
    def clean_categories(categories: Optional[List[str]]) -> List[str]:
        # Sıra korunur, tekrarlar ve boşlar atılır
        out: List[str] = []
        for c in categories or []:
            c = str(c).strip()
            if c and c not in out:
                out.append(c)
        return out

    @staticmethod
    def clean_isbn(isbn: Optional[str]) -> Optional[str]:
        if TextValidator.is_blank(isbn):
            return None
        if not ISBNValidator.is_valid_isbn(isbn):
            raise ValidationError("Invalid ISBN format")
        return ISBNValidator.normalize_isbn(isbn)
