import logging
from datetime import datetime
from typing import Dict, List, Optional

from library_app.database import get_db_connection, to_iso, utcnow
from library_app.errors import AccessDeniedError, NotFoundError
from library_app.fine import Fine
from library_app.user import User

logger = logging.getLogger(__name__)

FINE_SELECT = """
    SELECT f.*, u.name AS member_name, u.email AS member_email, b.name AS book_name
    FROM fines f
    JOIN users u ON u.id = f.member_id
    LEFT JOIN borrow_records r ON r.id = f.borrow_record_id
    LEFT JOIN books b ON b.id = r.book_id
"""


class FineLedger:
    """Cezaların listelenmesi ve ödendi olarak işaretlenmesi.

    Cezalar yalnızca iade sırasında oluşturulur (bkz. Circulation.mark_returned);
    burada yalnızca 'paid' ve 'paid_at' alanları değişir.
    """

    def find_fine(self, fine_id: str) -> Optional[Fine]:
        conn = get_db_connection()
        try:
            row = conn.execute(FINE_SELECT + " WHERE f.id = ?", (fine_id,)).fetchone()
            return Fine.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def list_fines(self, viewer: User, search: Optional[str] = None) -> List[Fine]:
        """Yöneticiler tüm cezaları, üyeler yalnızca kendi cezalarını görür. En yeni önce."""
        clauses = []
        params: List[str] = []
        if not viewer.is_admin:
            clauses.append("f.member_id = ?")
            params.append(viewer.id)
        if search and search.strip():
            like = f"%{search.strip()}%"
            clauses.append("(u.name LIKE ? OR IFNULL(b.name, '') LIKE ?)")
            params.extend([like, like])

        sql = FINE_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY f.created_at DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [Fine.from_dict(dict(row)) for row in rows]

    @staticmethod
    def totals(fines: List[Fine]) -> Dict[str, float]:
        unpaid = sum(f.amount for f in fines if not f.paid)
        paid = sum(f.amount for f in fines if f.paid)
        return {"total": unpaid + paid, "unpaid": unpaid, "paid": paid}

    def mark_paid(self, fine_id: str, actor: User, now: Optional[datetime] = None) -> Fine:
        """Cezayı ödendi olarak işaretle (yalnızca yönetici). Zaten ödenmişse değişmeden döner."""
        if not actor.is_admin:
            raise AccessDeniedError("Only admins can mark fines as paid")
        fine = self.find_fine(fine_id)
        if not fine:
            raise NotFoundError("Fine not found")
        if fine.paid:
            return fine

        stamp = to_iso(now or utcnow())
        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE fines SET paid = 1, paid_at = ?, updated_at = ? WHERE id = ? AND paid = 0",
                (stamp, stamp, fine_id)
            )
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Fine paid: fine={fine_id} amount={fine.amount} by={actor.id}")
        return self.find_fine(fine_id)

    def unpaid_total(self, member_id: str) -> float:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT IFNULL(SUM(amount), 0) FROM fines WHERE member_id = ? AND paid = 0",
                (member_id,)
            ).fetchone()
            return float(row[0])
        finally:
            conn.close()
