import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer

from library_app.auth import AuthService
from library_app.circulation import Circulation
from library_app.config import settings
from library_app.database import initialize_database
from library_app.errors import StoreError
from library_app.library import Library
from library_app.reports import EXPORT_FORMATS, REPORT_TYPES, ReportService
from library_app.ui_helpers import print_book_list, print_stats_result, set_output_mode
from library_app.user import UserRole

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

# --- Typer CLI Uygulaması ---
app = typer.Typer(help="Kütüphane yönetim CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Çıktı formatı: plain | json | rich (varsayılan: plain)",
    )
):
    """CLI için genel seçenekler (ör. çıktı modu)."""
    if output:
        set_output_mode(output)
    initialize_database()


@app.command("init-db")
def cli_init_db():
    """Veritabanı tablolarını oluştur."""
    print("Database initialized.")


@app.command("create-admin")
def cli_create_admin(
    email: str = typer.Argument(..., help="Yönetici e-postası"),
    name: str = typer.Option("Administrator", "--name", "-n", help="Görünen ad"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="Parola"),
):
    """Yönetici hesabı oluştur."""
    try:
        user = AuthService().register(name, email, password, role=UserRole.ADMIN.value)
    except StoreError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    print(f"Admin created: {user.email}")


@app.command("books")
def cli_books(
    query: Optional[str] = typer.Argument(None, help="Ad, yazar, UID veya ISBN içinde arama"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Kategoriye göre filtrele"),
    available: bool = typer.Option(False, "--available", help="Yalnızca stoktaki kitaplar"),
):
    """Kataloğu listele."""
    books = Library().list_books(query, category=category, available_only=available)
    print_book_list(books)


@app.command("mark-overdue")
def cli_mark_overdue():
    """Vadesi geçmiş ödünçleri 'overdue' olarak işaretle."""
    count = Circulation().mark_overdue()
    print(f"Marked {count} borrow records overdue.")


@app.command("stats")
def cli_stats():
    """Pano istatistiklerini göster."""
    print_stats_result(Library().get_statistics())


@app.command("export")
def cli_export(
    report_type: str = typer.Argument("borrows", help=f"Rapor türü: {', '.join(REPORT_TYPES)}"),
    fmt: str = typer.Option("csv", "--format", "-f", help=f"Biçim: {', '.join(EXPORT_FORMATS)}"),
    period: str = typer.Option("month", "--period", "-p", help="day, month veya year"),
    directory: Path = typer.Option(Path("."), "--dir", "-d", help="Çıktı dizini"),
):
    """Raporu dosyaya aktar."""
    try:
        filename, content, _ = ReportService().export(report_type, fmt, period)
    except StoreError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    target = directory / filename
    target.write_bytes(content)
    print(f"Report written to {target}")


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Kod değişikliklerinde yeniden yükle")):
    """Uvicorn kullanarak API'yi başlat."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_app.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    subprocess.run(args)


if __name__ == "__main__":
    app()
