"""Sequential batch processing of garments against a rotating set of models"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

from config import GENERATION_TIMEOUT_SECONDS, IMAGE_REFERENCE_MODE
from services.asset_service import GarmentEntry, ImageAsset, ModelImage
from services.errors import BatchNotReadyError, BatchRunningError, TryOnError
from services.gallery_service import GalleryStore, GenerationResult
from services.generation_service import generate_tryon
from services.image_service import ensure_valid_image, to_data_url
from services.naming import build_filename
from services.upload_service import upload_file

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled"


class BatchStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class Success:
    result: GenerationResult


@dataclass(frozen=True)
class Failure:
    message: str


@dataclass(frozen=True)
class ItemOutcome:
    position: int  # 1-based within the batch
    garment_id: str
    style_code: str
    model_id: Optional[str]
    result: Union[Success, Failure]

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Success)


@dataclass(frozen=True)
class LatestResult:
    result: GenerationResult
    model_id: str
    model_preview_id: str
    style_code: str


class BatchOrchestrator:
    """Drives one batch at a time: Idle -> Running -> Idle.

    ``next_model_index`` survives across batches so model rotation continues
    where the previous batch stopped.
    """

    def __init__(
        self,
        gallery: GalleryStore,
        generate: Optional[Callable] = None,
        upload: Optional[Callable] = None,
        reference_mode: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.gallery = gallery
        self._generate = generate
        self._upload = upload
        self.reference_mode = reference_mode or IMAGE_REFERENCE_MODE
        self.timeout = timeout if timeout is not None else GENERATION_TIMEOUT_SECONDS

        self.next_model_index = 0
        self.status = BatchStatus.IDLE
        self.current_index = 0
        self.total = 0
        self.current_model_index = 0
        self.outcomes: List[ItemOutcome] = []
        self.latest: Optional[LatestResult] = None
        self.cancel_requested = False

        self._models: List[ModelImage] = []
        self._garments: List[GarmentEntry] = []

    @property
    def running(self) -> bool:
        return self.status == BatchStatus.RUNNING

    @property
    def model_count(self) -> int:
        return len(self._models)

    @property
    def errors(self) -> List[str]:
        return [o.result.message for o in self.outcomes if isinstance(o.result, Failure)]

    @property
    def last_error(self) -> Optional[str]:
        errors = self.errors
        return errors[-1] if errors else None

    @property
    def progress_percent(self) -> int:
        if not self.total:
            return 0
        return round(self.current_index / self.total * 100)

    def begin(self, models: List[ModelImage], garments: List[GarmentEntry]) -> None:
        """Check preconditions and enter Running with a snapshot of the inputs"""
        if self.running:
            raise BatchRunningError("A batch is already running.")
        if not models:
            raise BatchNotReadyError("Add at least one model image before generating.")
        if not garments:
            raise BatchNotReadyError("Add at least one garment image before generating.")
        invalid = [g for g in garments if not g.style_code_valid]
        if invalid:
            codes = ", ".join(repr(g.style_code) for g in invalid)
            raise BatchNotReadyError(f"Every garment needs a style code of 2-20 letters or digits (invalid: {codes}).")

        self._models = list(models)
        self._garments = list(garments)
        self.status = BatchStatus.RUNNING
        self.current_index = 0
        self.total = len(self._garments)
        self.current_model_index = 0
        self.outcomes = []
        self.latest = None
        self.cancel_requested = False
        logger.info(f"Batch started: {self.total} garment(s), {len(self._models)} model(s), next model index {self.next_model_index}")

    def cancel(self) -> bool:
        """Ask a running batch to stop before its next item"""
        if not self.running:
            return False
        self.cancel_requested = True
        logger.info("Batch cancellation requested")
        return True

    def select_model(self) -> Tuple[int, ModelImage]:
        idx = self.next_model_index % len(self._models)
        self.next_model_index += 1
        return idx, self._models[idx]

    async def run(self) -> List[ItemOutcome]:
        """Process every garment in order, one at a time"""
        if not self.running:
            raise BatchNotReadyError("Batch has not been started.")
        try:
            for position, garment in enumerate(self._garments, start=1):
                if self.cancel_requested:
                    self.outcomes.append(ItemOutcome(position, garment.id, garment.style_code, None, Failure(CANCELLED_MESSAGE)))
                    continue

                model_idx, model = self.select_model()
                self.current_index = position
                self.current_model_index = model_idx + 1
                logger.info(f"Processing garment {position} of {self.total} ({garment.style_code}) with model {model_idx + 1} of {len(self._models)}")

                outcome = await self._process_item(position, model, garment)
                self.outcomes.append(outcome)
        finally:
            self.status = BatchStatus.IDLE
            succeeded = sum(1 for o in self.outcomes if o.ok)
            logger.info(f"Batch finished: {succeeded} of {self.total} succeeded")
        return self.outcomes

    async def _process_item(self, position: int, model: ModelImage, garment: GarmentEntry) -> ItemOutcome:
        try:
            ensure_valid_image(model.content, model.content_type, label="Model image")
            ensure_valid_image(garment.content, garment.content_type, label="Garment image")
            model_ref, garment_ref = await self._references(model, garment)
            generate = self._generate or generate_tryon
            image_url = await asyncio.wait_for(generate(model_ref, garment_ref), timeout=self.timeout)
        except TryOnError as e:
            return self._failure(position, model, garment, e.message)
        except asyncio.TimeoutError:
            return self._failure(position, model, garment, f"Generation timed out after {self.timeout:g} seconds.")
        except Exception as e:
            logger.exception(f"Unexpected error on garment {position}: {str(e)}")
            return self._failure(position, model, garment, "An unexpected error occurred.")

        result = GenerationResult(result_url=image_url, filename=build_filename(garment.style_code, position))
        self.gallery.add(result)
        self.latest = LatestResult(result, model.id, model.preview_id, garment.style_code)
        logger.info(f"Garment {position} done: {result.filename}")
        return ItemOutcome(position, garment.id, garment.style_code, model.id, Success(result))

    def _failure(self, position: int, model: ModelImage, garment: GarmentEntry, message: str) -> ItemOutcome:
        labeled = f"File {position}: {message}"
        logger.warning(labeled)
        return ItemOutcome(position, garment.id, garment.style_code, model.id, Failure(labeled))

    async def _references(self, model: ImageAsset, garment: ImageAsset) -> Tuple[str, str]:
        if self.reference_mode == "upload":
            upload = self._upload or upload_file
            model_url = await upload(model.content, model.filename, model.content_type)
            garment_url = await upload(garment.content, garment.filename, garment.content_type)
            return model_url, garment_url
        return to_data_url(model.content, model.content_type), to_data_url(garment.content, garment.content_type)
