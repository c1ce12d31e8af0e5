import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    # Ayrıcalıklı kitap ekleme uç noktası için servis anahtarı
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Veritabanı Ayarları
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Ödünç ve ceza kuralları
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", "10"))
    default_borrow_days: int = int(os.getenv("DEFAULT_BORROW_DAYS", "14"))
    low_stock_threshold: int = int(os.getenv("LOW_STOCK_THRESHOLD", "3"))
    default_shelf_capacity: int = int(os.getenv("DEFAULT_SHELF_CAPACITY", "100"))

    # Güvenlik Ayarları
    min_password_length: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))
    session_ttl_hours: int = int(os.getenv("SESSION_TTL_HOURS", "168"))  # 7 gün
    password_hash_iterations: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "120000"))

    # Sohbet asistanı (Gemini) Ayarları
    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash-latest")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    assistant_timeout: float = float(os.getenv("ASSISTANT_TIMEOUT", "15"))
    assistant_book_limit: int = int(os.getenv("ASSISTANT_BOOK_LIMIT", "100"))
    assistant_context_books: int = int(os.getenv("ASSISTANT_CONTEXT_BOOKS", "50"))

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Library Management API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Özellik Bayrakları
    enable_ai_features: bool = os.getenv("ENABLE_AI_FEATURES", "True").lower() in ("true", "1", "yes")


settings = Settings()
