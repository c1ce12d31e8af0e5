"""Library App - Servisler Paketi

Bu paket harici entegrasyonlar için servis modüllerini içerir:
- Sohbet asistanı (metin üretim sağlayıcısı) servisi
- HTTP istemci soyutlaması
"""
