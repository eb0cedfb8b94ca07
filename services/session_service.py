"""Per-login workspace: models, garments, batch state and gallery"""
import logging
import secrets
import time
from typing import Dict, List, Optional, Sequence, Tuple

from config import MAX_GARMENTS, MAX_MODELS, SESSION_MAX_AGE_SECONDS
from services.asset_service import GarmentEntry, ImageAsset, ModelImage, PreviewRegistry
from services.batch_service import BatchOrchestrator
from services.errors import BatchRunningError, LimitExceededError, NotFoundError
from services.gallery_service import GalleryStore
from services.image_service import ensure_valid_image, make_preview

logger = logging.getLogger(__name__)

# (content, content_type, filename)
Upload = Tuple[bytes, Optional[str], str]


class Session:
    def __init__(self, token: str):
        self.token = token
        self.created_at = time.monotonic()
        self.models: List[ModelImage] = []
        self.garments: List[GarmentEntry] = []
        self.previews = PreviewRegistry()
        self.gallery = GalleryStore()
        self.batch = BatchOrchestrator(self.gallery)

    def expired(self, max_age: float = SESSION_MAX_AGE_SECONDS) -> bool:
        return time.monotonic() - self.created_at > max_age

    def _ensure_idle(self) -> None:
        if self.batch.running:
            raise BatchRunningError("Cannot change images while a batch is running.")

    def _prepare(self, uploads: Sequence[Upload], current: int, limit: int, kind: str) -> Tuple[List[Tuple[Upload, bytes]], Optional[str]]:
        """Validate uploads and render previews; nothing is stored if any file fails"""
        remaining = limit - current
        if remaining <= 0:
            raise LimitExceededError(f"Maximum {limit} {kind} images allowed.")

        warning = None
        accepted = list(uploads[:remaining])
        if len(uploads) > remaining:
            warning = f"Only {remaining} more file{'s' if remaining > 1 else ''} can be added. Extra files were ignored."

        for content, content_type, filename in accepted:
            ensure_valid_image(content, content_type, label=filename)
        return [(upload, make_preview(upload[0])) for upload in accepted], warning

    def add_models(self, uploads: Sequence[Upload]) -> Tuple[List[ModelImage], Optional[str]]:
        self._ensure_idle()
        prepared, warning = self._prepare(uploads, len(self.models), MAX_MODELS, "model")
        added = []
        for (content, content_type, filename), thumbnail in prepared:
            model = ModelImage(content, content_type, filename, self.previews.acquire(thumbnail))
            self.models.append(model)
            added.append(model)
        logger.info(f"Added {len(added)} model image(s), total {len(self.models)}")
        return added, warning

    def add_garments(self, uploads: Sequence[Upload], style_codes: Optional[Sequence[str]] = None) -> Tuple[List[GarmentEntry], Optional[str]]:
        self._ensure_idle()
        prepared, warning = self._prepare(uploads, len(self.garments), MAX_GARMENTS, "garment")
        codes = list(style_codes or [])
        added = []
        for idx, ((content, content_type, filename), thumbnail) in enumerate(prepared):
            code = codes[idx] if idx < len(codes) else ""
            entry = GarmentEntry(content, content_type, filename, self.previews.acquire(thumbnail), style_code=code)
            self.garments.append(entry)
            added.append(entry)
        logger.info(f"Added {len(added)} garment image(s), total {len(self.garments)}")
        return added, warning

    def update_style_code(self, garment_id: str, style_code: str) -> GarmentEntry:
        self._ensure_idle()
        entry = self._find(self.garments, garment_id, "Garment")
        entry.style_code = style_code
        return entry

    def remove_model(self, model_id: str) -> None:
        self._ensure_idle()
        model = self._find(self.models, model_id, "Model image")
        self.models.remove(model)
        self.previews.release(model.preview_id)

    def remove_garment(self, garment_id: str) -> None:
        self._ensure_idle()
        entry = self._find(self.garments, garment_id, "Garment")
        self.garments.remove(entry)
        self.previews.release(entry.preview_id)

    def clear_models(self) -> int:
        self._ensure_idle()
        return self._clear(self.models)

    def clear_garments(self) -> int:
        self._ensure_idle()
        return self._clear(self.garments)

    def _clear(self, assets: List) -> int:
        count = len(assets)
        for asset in assets:
            self.previews.release(asset.preview_id)
        assets.clear()
        return count

    def start_batch(self) -> None:
        self.batch.begin(self.models, self.garments)

    def close(self) -> None:
        """Release every resource held by the session"""
        self.batch.cancel()
        self._clear(self.models)
        self._clear(self.garments)
        self.previews.clear()

    @staticmethod
    def _find(assets: List[ImageAsset], asset_id: str, kind: str):
        for asset in assets:
            if asset.id == asset_id:
                return asset
        raise NotFoundError(f"{kind} {asset_id} not found")


class SessionStore:
    """Sessions keyed by the cookie token, kept in memory only"""

    def __init__(self, max_age: float = SESSION_MAX_AGE_SECONDS):
        self.max_age = max_age
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def purge_expired(self) -> int:
        """Drop and close every session past its max age"""
        expired = [token for token, session in self._sessions.items() if session.expired(self.max_age)]
        for token in expired:
            self.drop(token)
        if expired:
            logger.info(f"Purged {len(expired)} expired session(s)")
        return len(expired)

    def create(self) -> Session:
        self.purge_expired()
        session = Session(secrets.token_urlsafe(32))
        self._sessions[session.token] = session
        logger.info(f"Session created ({len(self._sessions)} active)")
        return session

    def get(self, token: Optional[str]) -> Optional[Session]:
        self.purge_expired()
        if not token:
            return None
        return self._sessions.get(token)

    def drop(self, token: Optional[str]) -> None:
        session = self._sessions.pop(token, None) if token else None
        if session is not None:
            session.close()
