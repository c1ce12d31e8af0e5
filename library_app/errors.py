from typing import Optional

# Veritabanının benzersizlik kısıtı ihlal kodu (books.uid için kontrol edilir)
UNIQUE_VIOLATION = "23505"


class StoreError(Exception):
    """Mesaj ve isteğe bağlı bir kod taşıyan genel depo hatası."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(StoreError, ValueError):
    pass


class DuplicateError(ValidationError):
    """Benzersizlik kısıtı ihlali."""

    def __init__(self, message: str, code: Optional[str] = UNIQUE_VIOLATION) -> None:
        super().__init__(message, code)


class NotFoundError(StoreError, LookupError):
    pass


class AccessDeniedError(StoreError):
    """Çağıranın rolü işleme izin vermiyor."""
    pass


class InvalidTransitionError(ValidationError):
    """Ödünç kaydının mevcut durumu istenen geçişe izin vermiyor."""
    pass


class NoCopiesAvailableError(InvalidTransitionError):
    pass


class AuthenticationError(StoreError):
    """Geçersiz kimlik bilgileri veya oturum."""
    pass
