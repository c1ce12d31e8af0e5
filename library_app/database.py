import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from library_app.config import settings

# .env'den ortam değişkenlerinin okunmadan önce yüklendiğinden emin olun.
load_dotenv()

logger = logging.getLogger(__name__)

# Varsayılan veritabanı dosyası.
# Testler ve çağıranlar, bağlantı açmadan önce database.DATABASE_FILE'ı değiştirerek geçersiz kılabilir.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.database_file

BORROW_STATUSES = ("pending", "borrowed", "rejected", "returned", "overdue")
USER_ROLES = ("admin", "member", "viewer")


def get_db_connection() -> sqlite3.Connection:
    """SQLite veritabanına yeni bir bağlantı kurar.

    Her işlem kendi bağlantısını açar ve kapatır; istekler arasında paylaşılan durum yoktur.
    """
    conn = sqlite3.connect(DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    # Daha iyi eşzamanlı erişim için WAL modunu etkinleştir
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


# ------------------------- Zaman ve kimlik yardımcıları ------------------------- #
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Bir datetime'ı sabit genişlikli UTC ISO-8601 dizesine çevir.

    Saat dilimi olmayan değerler UTC kabul edilir. Sabit biçim, SQL'de dize
    karşılaştırmasıyla aralık filtrelerinin doğru çalışmasını sağlar.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return str(uuid.uuid4())


def create_tables() -> None:
    """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
    conn = get_db_connection()
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'member' CHECK(role IN ('admin', 'member', 'viewer')),
            avatar_url TEXT,
            password_hash TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    # Oturum belirteçleri (Authorization: Bearer <token>)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            token TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS book_shelves (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            location TEXT NOT NULL,
            description TEXT,
            capacity INTEGER NOT NULL DEFAULT 100,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            uid TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            author TEXT NOT NULL,
            description TEXT,
            categories TEXT NOT NULL DEFAULT '[]',
            shelf_id TEXT,
            total_copies INTEGER NOT NULL DEFAULT 1,
            available_copies INTEGER NOT NULL DEFAULT 1,
            cover_image TEXT,
            isbn TEXT,
            publisher TEXT,
            published_year INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK(available_copies >= 0 AND available_copies <= total_copies),
            FOREIGN KEY (shelf_id) REFERENCES book_shelves(id) ON DELETE SET NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS borrow_records (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            member_id TEXT NOT NULL,
            borrowed_at TEXT NOT NULL,
            due_date TEXT NOT NULL,
            returned_at TEXT,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending', 'borrowed', 'rejected', 'returned', 'overdue')),
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
            FOREIGN KEY (member_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS fines (
            id TEXT PRIMARY KEY,
            borrow_record_id TEXT NOT NULL,
            member_id TEXT NOT NULL,
            amount REAL NOT NULL,
            paid INTEGER NOT NULL DEFAULT 0,
            paid_at TEXT,
            description TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (borrow_record_id) REFERENCES borrow_records(id) ON DELETE CASCADE,
            FOREIGN KEY (member_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    # Sık kullanılan filtreler için dizinler
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_name ON books(name)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_shelf_id ON books(shelf_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_member ON borrow_records(member_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_book ON borrow_records(book_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_status ON borrow_records(status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_borrowed_at ON borrow_records(borrowed_at)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_fines_member ON fines(member_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")

    conn.commit()
    conn.close()


def initialize_database() -> None:
    """Veritabanını başlatır, gerekirse tabloları oluşturur."""
    create_tables()
    logger.info(f"Database ready: {DATABASE_FILE}")
