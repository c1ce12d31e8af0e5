import logging
from typing import Any, Dict, List, Optional

from library_app.database import USER_ROLES, get_db_connection, to_iso, utcnow
from library_app.errors import AccessDeniedError, NotFoundError, ValidationError
from library_app.user import User
from library_app.validators import TextValidator

logger = logging.getLogger(__name__)

USER_COLUMNS = "id, email, name, role, avatar_url, created_at, updated_at"


class MemberDirectory:
    """Üye profilleri, roller ve yönetici üye listesi."""

    def find_user(self, user_id: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
            return User.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_user(self, user_id: str) -> User:
        user = self.find_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_members(self, role: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Kullanıcıları ödünç sayısı ve ödenmemiş ceza toplamıyla listele."""
        if role and role != "all" and role not in USER_ROLES:
            raise ValidationError(f"Invalid role. Allowed: {', '.join(USER_ROLES)}")

        clauses = []
        params: List[str] = []
        if role and role != "all":
            clauses.append("u.role = ?")
            params.append(role)
        if search and search.strip():
            like = f"%{search.strip()}%"
            clauses.append("(u.name LIKE ? OR u.email LIKE ?)")
            params.extend([like, like])

        sql = """
            SELECT u.id, u.email, u.name, u.role, u.avatar_url, u.created_at, u.updated_at,
                   (SELECT COUNT(*) FROM borrow_records r WHERE r.member_id = u.id) AS borrow_count,
                   (SELECT IFNULL(SUM(f.amount), 0) FROM fines f WHERE f.member_id = u.id AND f.paid = 0) AS unpaid_fines
            FROM users u
        """
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY u.created_at DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        members = []
        for row in rows:
            data = User.from_dict(dict(row)).to_dict()
            data["borrow_count"] = row["borrow_count"]
            data["unpaid_fines"] = float(row["unpaid_fines"])
            members.append(data)
        return members

    def update_role(self, user_id: str, role: str, actor: User) -> User:
        if not actor.is_admin:
            raise AccessDeniedError("Only admins can change roles")
        if role not in USER_ROLES:
            raise ValidationError(f"Invalid role. Allowed: {', '.join(USER_ROLES)}")
        self.get_user(user_id)

        conn = get_db_connection()
        try:
            conn.execute("UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
                         (role, to_iso(utcnow()), user_id))
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Role changed: user={user_id} role={role} by={actor.id}")
        return self.get_user(user_id)

    def update_profile(self, user_id: str, name: Optional[str] = None,
                       avatar_url: Optional[str] = None) -> User:
        """Kullanıcının kendi adını ve avatarını güncelle."""
        fields: Dict[str, Any] = {}
        if name is not None:
            if TextValidator.is_blank(name):
                raise ValidationError("Name must not be empty")
            fields["name"] = TextValidator.sanitize_text(name)
        if avatar_url is not None:
            fields["avatar_url"] = avatar_url.strip() or None
        if not fields:
            raise ValidationError("Nothing to update")
        self.get_user(user_id)

        fields["updated_at"] = to_iso(utcnow())
        set_clause = ", ".join([f"{field} = ?" for field in fields.keys()])
        conn = get_db_connection()
        try:
            conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", list(fields.values()) + [user_id])
            conn.commit()
        finally:
            conn.close()
        return self.get_user(user_id)
