import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from library_app.book import Book

# CLI çıktı modunu kontrol eden ortam değişkeni
# İzin verilen değerler: 'plain' (varsayılan), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Book]) -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır.
    - plain: 'UID - Name by Author (available/total)' satırları
    - json: kitap sözlüklerinin JSON dizisi
    - rich: stok durumuyla Rich tablosu
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("UID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Author", style="white")
        table.add_column("Copies", justify="right")
        table.add_column("Stock")
        for b in books:
            style = {"Out of Stock": "red", "Low Stock": "yellow"}.get(b.stock_status, "green")
            table.add_row(b.uid, b.name, b.author, f"{b.available_copies}/{b.total_copies}",
                          f"[{style}]{b.stock_status}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.uid} - {b.name} by {b.author} ({b.available_copies}/{b.total_copies})")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Pano istatistiklerini mevcut çıktı moduna göre yazdır."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "total_members": "Total Members",
        "active_borrows": "Active Borrows",
        "pending_requests": "Pending Requests",
        "overdue_borrows": "Overdue Loans",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
