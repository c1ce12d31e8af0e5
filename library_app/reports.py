import calendar
import csv
import io
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from library_app.database import get_db_connection, parse_iso, to_iso, utcnow
from library_app.errors import ValidationError

logger = logging.getLogger(__name__)

PERIODS = ("day", "month", "year")
PERIOD_LABELS = {"day": "Last 24 Hours", "month": "Last Month", "year": "Last Year"}
REPORT_TYPES = ("borrows", "books", "members", "fines")
EXPORT_FORMATS = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}

REPORT_COLUMNS = {
    "borrows": ["Book Name", "Author", "Member", "Email", "Borrowed Date", "Due Date", "Returned", "Status"],
    "books": ["UID", "Name", "Author", "Categories", "Total Copies", "Available", "Shelf", "Location"],
    "members": ["Name", "Email", "Role", "Joined"],
    "fines": ["Member", "Email", "Book", "Amount", "Status", "Date", "Paid On"],
}


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Dönemin başlangıcı: bir gün, bir ay veya bir yıl öncesi."""
    now = now or utcnow()
    if period == "day":
        return now - timedelta(days=1)
    if period == "month":
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        day = min(now.day, calendar.monthrange(year, month)[1])
        return now.replace(year=year, month=month, day=day)
    if period == "year":
        day = min(now.day, calendar.monthrange(now.year - 1, now.month)[1])
        return now.replace(year=now.year - 1, day=day)
    raise ValidationError(f"Invalid period. Allowed: {', '.join(PERIODS)}")


def format_date(value: Optional[str], empty: str = "-") -> str:
    """ISO zaman damgasını 'Jan 5, 2025' biçimine çevir."""
    dt = parse_iso(value)
    if not dt:
        return empty
    return f"{dt:%b} {dt.day}, {dt.year}"


def top_counts(rows: List[Dict[str, Any]], key: str, limit: int = 5) -> List[Dict[str, Any]]:
    """Satırları anahtara göre grupla ve sayıya göre azalan sırala.

    Eşitlikte ilk görülme sırası korunur (sorted kararlıdır).
    """
    groups: Dict[Any, Dict[str, Any]] = {}
    for row in rows:
        k = row[key]
        if k not in groups:
            groups[k] = dict(row, count=0)
        groups[k]["count"] += 1
    return sorted(groups.values(), key=lambda g: g["count"], reverse=True)[:limit]


class ReportService:
    """Özet sayımlar, popüler kitaplar/aktif üyeler ve dışa aktarma."""

    def summary(self, period: str = "month", now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        start = to_iso(period_start(period, now))
        now_iso = to_iso(now)
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE borrowed_at >= ?", (start,))
            total_borrows = cursor.fetchone()[0]
            cursor.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE status = 'returned' AND returned_at >= ?", (start,)
            )
            total_returns = cursor.fetchone()[0]
            cursor.execute("""
                SELECT COUNT(*) FROM borrow_records
                WHERE status = 'overdue' OR (status = 'borrowed' AND due_date < ?)
            """, (now_iso,))
            total_overdue = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'member'")
            total_members = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM books")
            total_books = cursor.fetchone()[0]
        finally:
            conn.close()

        return {
            "period": period,
            "start": start,
            "total_borrows": total_borrows,
            "total_returns": total_returns,
            "total_overdue": total_overdue,
            "total_members": total_members,
            "total_books": total_books,
        }

    def _period_borrows(self, period: str, now: Optional[datetime]) -> List[Dict[str, Any]]:
        start = to_iso(period_start(period, now))
        conn = get_db_connection()
        try:
            rows = conn.execute("""
                SELECT r.book_id, r.member_id, b.name AS book_name, b.author AS book_author,
                       u.name AS member_name, u.email AS member_email
                FROM borrow_records r
                JOIN books b ON b.id = r.book_id
                JOIN users u ON u.id = r.member_id
                WHERE r.borrowed_at >= ?
                ORDER BY r.borrowed_at
            """, (start,)).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def popular_books(self, period: str = "month", now: Optional[datetime] = None, limit: int = 5) -> List[Dict[str, Any]]:
        rows = [
            {"book_id": r["book_id"], "name": r["book_name"], "author": r["book_author"]}
            for r in self._period_borrows(period, now)
        ]
        return top_counts(rows, "book_id", limit)

    def active_members(self, period: str = "month", now: Optional[datetime] = None, limit: int = 5) -> List[Dict[str, Any]]:
        rows = [
            {"member_id": r["member_id"], "name": r["member_name"], "email": r["member_email"]}
            for r in self._period_borrows(period, now)
        ]
        return top_counts(rows, "member_id", limit)

    # ------------------------- Dışa aktarma ------------------------- #
    def export_rows(self, report_type: str, period: str = "month",
                    now: Optional[datetime] = None) -> Tuple[List[str], List[List[Any]]]:
        """Rapor türü için başlıkları ve satırları döndür. Yalnızca ödünç raporu döneme göre süzülür."""
        if report_type not in REPORT_TYPES:
            raise ValidationError(f"Invalid report type. Allowed: {', '.join(REPORT_TYPES)}")
        conn = get_db_connection()
        try:
            if report_type == "borrows":
                rows = conn.execute("""
                    SELECT b.name AS book_name, b.author, u.name AS member_name, u.email,
                           r.borrowed_at, r.due_date, r.returned_at, r.status
                    FROM borrow_records r
                    LEFT JOIN books b ON b.id = r.book_id
                    LEFT JOIN users u ON u.id = r.member_id
                    WHERE r.borrowed_at >= ? AND r.borrowed_at <= ?
                    ORDER BY r.borrowed_at
                """, (to_iso(period_start(period, now)), to_iso(now or utcnow()))).fetchall()
                data = [[
                    r["book_name"] or "N/A", r["author"] or "N/A", r["member_name"] or "N/A", r["email"] or "N/A",
                    format_date(r["borrowed_at"]), format_date(r["due_date"]), format_date(r["returned_at"]),
                    r["status"],
                ] for r in rows]
            elif report_type == "books":
                rows = conn.execute("""
                    SELECT b.uid, b.name, b.author, b.categories, b.total_copies, b.available_copies,
                           s.name AS shelf_name, s.location
                    FROM books b LEFT JOIN book_shelves s ON s.id = b.shelf_id
                    ORDER BY b.name COLLATE NOCASE
                """).fetchall()
                data = [[
                    r["uid"], r["name"], r["author"], ", ".join(json.loads(r["categories"] or "[]")),
                    r["total_copies"], r["available_copies"], r["shelf_name"] or "Unassigned", r["location"] or "-",
                ] for r in rows]
            elif report_type == "members":
                rows = conn.execute("SELECT name, email, role, created_at FROM users ORDER BY created_at").fetchall()
                data = [[r["name"], r["email"], r["role"], format_date(r["created_at"])] for r in rows]
            else:
                rows = conn.execute("""
                    SELECT u.name AS member_name, u.email, b.name AS book_name, f.amount, f.paid,
                           f.created_at, f.paid_at
                    FROM fines f
                    LEFT JOIN users u ON u.id = f.member_id
                    LEFT JOIN borrow_records r ON r.id = f.borrow_record_id
                    LEFT JOIN books b ON b.id = r.book_id
                    ORDER BY f.created_at
                """).fetchall()
                data = [[
                    r["member_name"] or "N/A", r["email"] or "N/A", r["book_name"] or "N/A",
                    f"{float(r['amount']):.2f}", "Paid" if r["paid"] else "Unpaid",
                    format_date(r["created_at"]), format_date(r["paid_at"]),
                ] for r in rows]
        finally:
            conn.close()
        return REPORT_COLUMNS[report_type], data

    def export(self, report_type: str, fmt: str, period: str = "month",
               now: Optional[datetime] = None) -> Tuple[str, bytes, str]:
        """Raporu seçilen biçimde üret. (dosya adı, içerik, medya türü) döndürür."""
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Invalid format. Allowed: {', '.join(EXPORT_FORMATS)}")
        now = now or utcnow()
        headers, rows = self.export_rows(report_type, period, now)

        if fmt == "csv":
            content = self._to_csv(headers, rows)
        elif fmt == "json":
            content = self._to_json(headers, rows)
        elif fmt == "xlsx":
            content = self._to_xlsx(headers, rows)
        else:
            title = f"{report_type.capitalize()} Report"
            content = self._to_pdf(title, headers, rows, period, now)

        filename = f"{report_type}-report-{now:%Y-%m-%d}.{fmt}"
        logger.info(f"Report exported: {filename} ({len(rows)} rows)")
        return filename, content, EXPORT_FORMATS[fmt]

    @staticmethod
    def _to_csv(headers: List[str], rows: List[List[Any]]) -> bytes:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(headers)
        writer.writerows(rows)
        return buf.getvalue().encode("utf-8")

    @staticmethod
    def _to_json(headers: List[str], rows: List[List[Any]]) -> bytes:
        out = [dict(zip(headers, row)) for row in rows]
        return json.dumps(out, indent=2, ensure_ascii=False, default=str).encode("utf-8")

    @staticmethod
    def _to_xlsx(headers: List[str], rows: List[List[Any]]) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Report"
        ws.append(headers)
        for row in rows:
            ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    @staticmethod
    def _to_pdf(title: str, headers: List[str], rows: List[List[Any]], period: str, now: datetime) -> bytes:
        buf = io.BytesIO()
        pdf = canvas.Canvas(buf, pagesize=A4)
        width, height = A4
        left = 40
        col_width = (width - 2 * left) / len(headers)

        pdf.setFont("Helvetica-Bold", 18)
        pdf.drawString(left, height - 50, title)
        pdf.setFont("Helvetica", 10)
        pdf.drawString(left, height - 68, f"Generated: {now:%b} {now.day}, {now.year} {now:%H:%M}")
        pdf.drawString(left, height - 82, f"Period: {PERIOD_LABELS.get(period, period)}")

        y = height - 110
        pdf.setFont("Helvetica-Bold", 8)
        for i, header in enumerate(headers):
            pdf.drawString(left + i * col_width + 2, y, header[:12])
        pdf.setFont("Helvetica", 8)
        y -= 14
        for row in rows:
            # Sayfa sonu
            if y < 50:
                pdf.showPage()
                pdf.setFont("Helvetica", 8)
                y = height - 50
            for i, cell in enumerate(row):
                pdf.drawString(left + i * col_width + 2, y, str(cell)[:15])
            y -= 12

        pdf.showPage()
        pdf.save()
        return buf.getvalue()
