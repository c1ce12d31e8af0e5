"""Library App - Çekirdek Uygulama Paketi

Bu paket çekirdek uygulama modüllerini içerir:
- API uç noktaları (api.py)
- Katalog ve raf yönetimi (library.py)
- Ödünç alma iş akışı (circulation.py)
- Ceza muhasebesi (fine_ledger.py)
- Raporlama ve dışa aktarma (reports.py)
- Kimlik doğrulama ve üyeler (auth.py, members.py)
- CLI arayüzü (main.py)
- Veritabanı katmanı (database.py)
"""

__version__ = "1.0.0"
