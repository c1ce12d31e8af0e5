import hashlib
import hmac
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta
from typing import Optional, Tuple

from library_app.config import settings
from library_app.database import get_db_connection, new_id, to_iso, utcnow
from library_app.errors import AuthenticationError, DuplicateError, ValidationError
from library_app.members import USER_COLUMNS
from library_app.user import User, UserRole
from library_app.validators import TextValidator

logger = logging.getLogger(__name__)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """PBKDF2-SHA256 özeti; 'iterasyon$tuz$özet' biçiminde saklanır."""
    salt = salt or secrets.token_hex(16)
    iterations = settings.password_hash_iterations
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{iterations}${salt}${digest.hex()}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        iterations, salt, expected = stored.split("$")
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


class AuthService:
    """Kayıt, giriş ve oturum belirteçleri."""

    def register(self, name: str, email: str, password: str, role: str = UserRole.MEMBER.value,
                 now: Optional[datetime] = None) -> User:
        if TextValidator.is_blank(name):
            raise ValidationError("Name is required")
        if not TextValidator.validate_email(email):
            raise ValidationError("Invalid email address")
        if not TextValidator.validate_password(password):
            raise ValidationError(f"Password must be at least {settings.min_password_length} characters")
        if role not in (r.value for r in UserRole):
            raise ValidationError(f"Invalid role: {role}")

        stamp = to_iso(now or utcnow())
        user = User(id=new_id(), email=email, name=TextValidator.sanitize_text(name), role=role,
                    created_at=stamp, updated_at=stamp)
        conn = get_db_connection()
        try:
            conn.execute("""
                INSERT INTO users (id, email, name, role, avatar_url, password_hash, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (user.id, user.email, user.name, user.role, None, hash_password(password),
                  user.created_at, user.updated_at))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateError("An account with this email already exists") from e
        finally:
            conn.close()
        logger.info(f"User registered: id={user.id} role={user.role}")
        return user

    def login(self, email: str, password: str, now: Optional[datetime] = None) -> Tuple[str, User]:
        """Doğru kimlik bilgileri için yeni bir oturum belirteci oluştur."""
        now = now or utcnow()
        conn = get_db_connection()
        try:
            row = conn.execute(
                f"SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = ?",
                ((email or "").strip().lower(),)
            ).fetchone()
            if not row or not verify_password(password or "", row["password_hash"]):
                logger.warning(f"Failed login attempt for {email}")
                raise AuthenticationError("Invalid email or password")

            token = secrets.token_hex(32)
            expires = now + timedelta(hours=settings.session_ttl_hours)
            conn.execute(
                "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (token, row["id"], to_iso(now), to_iso(expires))
            )
            conn.commit()
            return token, User.from_dict(dict(row))
        finally:
            conn.close()

    def logout(self, token: str) -> bool:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def user_for_token(self, token: Optional[str], now: Optional[datetime] = None) -> Optional[User]:
        """Süresi dolmamış bir oturumun kullanıcısını döndür."""
        if not token:
            return None
        conn = get_db_connection()
        try:
            row = conn.execute("""
                SELECT u.id, u.email, u.name, u.role, u.avatar_url, u.created_at, u.updated_at
                FROM sessions s JOIN users u ON u.id = s.user_id
                WHERE s.token = ? AND s.expires_at > ?
            """, (token, to_iso(now or utcnow()))).fetchone()
            return User.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (to_iso(now or utcnow()),))
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
