import logging
import httpx
from typing import List, Optional
from ..config import settings
from ..models import StoreConstants, utcnow

logger = logging.getLogger(__name__)

class SurfaceNotifier:
    """
    Tells display surfaces to re-read the shared store.
    Best effort only: surfaces also re-read on their own schedule.
    """

    def __init__(self, urls: Optional[List[str]] = None, client: Optional[httpx.AsyncClient] = None):
        self.urls = list(settings.RELOAD_WEBHOOK_URLS if urls is None else urls)
        self.client = client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SECONDS)
        self.sent = 0
        self.failed = 0

    async def reload(self, kind: str = StoreConstants.RELOAD_KIND):
        payload = {"kind": kind, "published_at": utcnow().isoformat()}
        for url in self.urls:
            try:
                resp = await self.client.post(url, json=payload)
                resp.raise_for_status()
                self.sent += 1
                logger.debug(f"Reload '{kind}' delivered to {url}")
            except httpx.HTTPError as e:
                self.failed += 1
                logger.warning(f"Failed to notify {url}: {e}")

    async def close(self):
        await self.client.aclose()
