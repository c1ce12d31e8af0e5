import asyncio
import logging
from typing import Optional

import httpx

from library_app.config import settings

logger = logging.getLogger(__name__)


class ProviderHTTPClient:
    """Dış sağlayıcı çağrıları için havuzlu asenkron HTTP istemcisi.

    Yalnızca ağ hataları (httpx.RequestError) yeniden denenir; HTTP durum
    kodlarının yorumlanması çağırana aittir.
    """

    def __init__(self, timeout: Optional[float] = None, retries: int = 2, backoff: float = 0.5):
        self.retries = max(1, retries)
        self.backoff = backoff
        self._client = httpx.AsyncClient(
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=20, keepalive_expiry=30.0),
            timeout=httpx.Timeout(timeout=timeout or settings.assistant_timeout, connect=5.0),
            follow_redirects=True,
        )

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def post_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """POST; bağlantı hatalarında üstel bekleme ile tekrar dener, son hatayı fırlatır."""
        attempt = 0
        while True:
            try:
                return await self.post(url, **kwargs)
            except httpx.RequestError as e:
                attempt += 1
                if attempt >= self.retries:
                    logger.warning(f"POST {url} failed after {attempt} attempts: {e}")
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.debug(f"POST {url} failed ({e}); retrying in {delay}s")
                await asyncio.sleep(delay)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Uygulama ömrü boyunca paylaşılan istemci
_shared_client: Optional[ProviderHTTPClient] = None


async def get_http_client() -> ProviderHTTPClient:
    global _shared_client
    if _shared_client is None:
        _shared_client = ProviderHTTPClient()
    return _shared_client


async def cleanup_http_client():
    """Paylaşılan istemciyi kapat (API kapanışında çağrılır)."""
    global _shared_client
    if _shared_client:
        await _shared_client.close()
        _shared_client = None
