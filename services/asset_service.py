"""Uploaded model and garment images held for the life of a session"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict

from services.errors import NotFoundError
from services.naming import is_valid_style_code

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ImageAsset:
    content: bytes
    content_type: str
    filename: str
    preview_id: str
    id: str = field(default_factory=_new_id)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ModelImage(ImageAsset):
    pass


@dataclass
class GarmentEntry(ImageAsset):
    style_code: str = ""

    @property
    def style_code_valid(self) -> bool:
        return is_valid_style_code(self.style_code)


class PreviewRegistry:
    """Thumbnails handed out as preview references.

    A preview is acquired when an image is added and must be released on
    every path that removes the image.
    """

    def __init__(self):
        self._previews: Dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._previews)

    def __contains__(self, preview_id: str) -> bool:
        return preview_id in self._previews

    def acquire(self, thumbnail: bytes) -> str:
        preview_id = _new_id()
        self._previews[preview_id] = thumbnail
        return preview_id

    def release(self, preview_id: str) -> None:
        self._previews.pop(preview_id, None)

    def get(self, preview_id: str) -> bytes:
        try:
            return self._previews[preview_id]
        except KeyError:
            raise NotFoundError(f"Preview {preview_id} not found")

    def clear(self) -> None:
        self._previews.clear()
