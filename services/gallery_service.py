"""In-memory gallery of generated try-on results"""
import asyncio
import logging
import uuid
import zipfile
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from io import BytesIO
from typing import Iterable, List, Optional, Tuple

import httpx

from config import DOWNLOAD_DELAY_SECONDS, DOWNLOAD_TIMEOUT_SECONDS
from services.errors import NotFoundError, UpstreamError
from services.image_service import download_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    result_url: str
    filename: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class GalleryStore:
    """Newest-first collection of results, lost when the session ends"""

    def __init__(self):
        self._items: List[GenerationResult] = []

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> List[GenerationResult]:
        return list(self._items)

    def add(self, result: GenerationResult) -> None:
        self._items.insert(0, result)

    def get(self, item_id: str) -> GenerationResult:
        for item in self._items:
            if item.id == item_id:
                return item
        raise NotFoundError(f"Gallery item {item_id} not found")

    def delete(self, ids: Iterable[str]) -> int:
        """Remove matching items and return how many were removed"""
        doomed = set(ids)
        before = len(self._items)
        self._items = [item for item in self._items if item.id not in doomed]
        removed = before - len(self._items)
        logger.info(f"Deleted {removed} gallery item(s)")
        return removed

    def select(self, ids: Iterable[str]) -> List[GenerationResult]:
        wanted = set(ids)
        return [item for item in self._items if item.id in wanted]

    async def download_one(self, item: GenerationResult, client: Optional[httpx.AsyncClient] = None) -> Tuple[str, bytes]:
        content = await download_image(item.result_url, client=client)
        return item.filename, content

    async def download_many(
        self,
        items: List[GenerationResult],
        client: Optional[httpx.AsyncClient] = None,
        delay: Optional[float] = None,
    ) -> List[Tuple[str, bytes]]:
        """Fetch each item in turn with a fixed pause between fetches.

        Items that fail to download are logged and left out.
        """
        if delay is None:
            delay = DOWNLOAD_DELAY_SECONDS
        downloaded = []
        client_ctx = httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS) if client is None else nullcontext(client)
        async with client_ctx as session_client:
            for idx, item in enumerate(items):
                if idx > 0 and delay > 0:
                    await asyncio.sleep(delay)
                try:
                    downloaded.append(await self.download_one(item, client=session_client))
                except UpstreamError as e:
                    logger.error(f"Failed to download {item.filename}: {e.message}")
        return downloaded


def build_zip(files: List[Tuple[str, bytes]]) -> bytes:
    """Pack (filename, bytes) pairs into a ZIP archive, suffixing duplicate names"""
    buffer = BytesIO()
    seen = {}
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zip_file:
        for filename, content in files:
            count = seen.get(filename, 0)
            seen[filename] = count + 1
            if count:
                stem, dot, ext = filename.rpartition(".")
                filename = f"{stem} ({count}).{ext}" if dot else f"{filename} ({count})"
            zip_file.writestr(filename, content)
    return buffer.getvalue()
