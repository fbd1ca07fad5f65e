"""Prediction workflow: inference, classification and atomic persistence."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from ..errors import InferenceUnavailable, NotFound, PersistenceFailure, PlantDxError
from ..models.db_models import utcnow
from ..models.entities import (
    Image,
    Label,
    Prediction,
    PredictionFilter,
    PredictionMark,
    PredictionResult,
    Recommendation,
    User,
)
from ..repositories.base import UnitOfWork
from .classifier import classify_label, match_recommendations
from .inference import InferenceClient
from .job_store import PipelineState, RunStore
from .storage import FileStorage

logger = logging.getLogger(__name__)

# PredictionResult field -> mark type name
MASK_MARK_TYPES = (
    ("leaf_mask", "leaf_mask"),
    ("lesion_mask", "lesion_mask"),
)

DEFAULT_PAGE_SIZE = 16
MAX_PAGE_SIZE = 100

UnitOfWorkFactory = Callable[[], UnitOfWork]


@dataclass(frozen=True)
class CreatePrediction:
    user_id: str
    image_id: str
    label_id: Optional[int] = None
    plot_id: Optional[str] = None


@dataclass(frozen=True)
class PipelineOutcome:
    run_id: str
    prediction: Prediction
    label: Label
    recommendations: List[Recommendation]


def page_window(page: Optional[int], limit: Optional[int], default_limit: int) -> Tuple[int, int, int]:
    """Clamp a 1-indexed page request and return ``(page, limit, offset)``."""
    page = max(page or 1, 1)
    limit = min(max(limit or default_limit, 1), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


class PredictionPipeline:
    """Runs one submission through received -> inferring -> classifying -> persisting.

    Only ``InferenceUnavailable`` is retried, with exponential backoff. Once the
    persisting step starts it is shielded from cancellation.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        inference_client: InferenceClient,
        file_storage: FileStorage,
        runs: Optional[RunStore] = None,
        retries: int = 2,
        backoff_seconds: float = 0.1,
    ) -> None:
        self._uow_factory = uow_factory
        self._client = inference_client
        self._storage = file_storage
        self.runs = runs or RunStore()
        self._retries = retries
        self._backoff = backoff_seconds

    async def run(
        self,
        command: CreatePrediction,
        image_bytes: Optional[bytes] = None,
        run_id: Optional[str] = None,
    ) -> PipelineOutcome:
        run_id = run_id or str(uuid4())
        self.runs.create(run_id)
        try:
            outcome = await self._run(run_id, command, image_bytes)
        except PlantDxError as exc:
            logger.warning("Run %s failed (%s): %s", run_id, exc.kind, exc.message)
            self.runs.mark_failed(run_id, exc.message, exc.kind)
            raise
        except asyncio.CancelledError:
            logger.info("Run %s cancelled before persisting", run_id)
            self.runs.mark_failed(run_id, "cancelled")
            raise
        except Exception as exc:
            logger.exception("Run %s failed unexpectedly", run_id)
            self.runs.mark_failed(run_id, str(exc))
            raise

        self.runs.mark_completed(run_id, outcome.prediction.id)
        logger.info(
            "Run %s finished: prediction %s labelled %s (severity %.3f, %d recommendations)",
            run_id,
            outcome.prediction.id,
            outcome.label.name,
            outcome.prediction.severity,
            len(outcome.recommendations),
        )
        return outcome

    async def _run(
        self, run_id: str, command: CreatePrediction, image_bytes: Optional[bytes]
    ) -> PipelineOutcome:
        image, manual_label = await asyncio.to_thread(self._load_context, command)
        if image_bytes is None:
            image_bytes = await asyncio.to_thread(self._read_image, image)

        self.runs.advance(run_id, PipelineState.INFERRING)
        result = await self._infer(image_bytes)

        self.runs.advance(run_id, PipelineState.CLASSIFYING)
        labels, recommendations = await asyncio.to_thread(self._load_rules)
        label = manual_label or classify_label(result.severity, labels)
        matched = match_recommendations(result.severity, recommendations)

        self.runs.advance(run_id, PipelineState.PERSISTING)
        write = asyncio.ensure_future(asyncio.to_thread(self._persist, command, label, result))
        while True:
            try:
                prediction = await asyncio.shield(write)
                break
            except asyncio.CancelledError:
                if write.done() and write.cancelled():
                    raise
                logger.warning("Run %s cancelled while persisting; finishing the write", run_id)
                task = asyncio.current_task()
                if task is not None:
                    task.uncancel()

        return PipelineOutcome(
            run_id=run_id, prediction=prediction, label=label, recommendations=matched
        )

    async def _infer(self, image_bytes: bytes) -> PredictionResult:
        attempts = self._retries + 1
        for attempt in range(attempts):
            try:
                return await self._client.predict(image_bytes)
            except InferenceUnavailable as exc:
                if attempt == attempts - 1:
                    raise
                delay = self._backoff * (2 ** attempt)
                logger.warning(
                    "Inference unavailable (attempt %d/%d), retrying in %.2fs: %s",
                    attempt + 1,
                    attempts,
                    delay,
                    exc.message,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    def _load_context(self, command: CreatePrediction) -> Tuple[Image, Optional[Label]]:
        with self._uow_factory() as uow:
            if uow.users.get_by_id(command.user_id) is None:
                raise NotFound("User", command.user_id)
            image = uow.images.get_by_id(command.image_id)
            if image is None:
                raise NotFound("Image", command.image_id)
            if command.plot_id is not None and uow.plots.get_by_id(command.plot_id) is None:
                raise NotFound("Plot", command.plot_id)
            label = None
            if command.label_id is not None:
                label = uow.labels.get_by_id(command.label_id)
                if label is None:
                    raise NotFound("Label", command.label_id)
        return image, label

    def _read_image(self, image: Image) -> bytes:
        try:
            return self._storage.download(image.filepath)
        except FileNotFoundError as exc:
            raise NotFound("Image file", image.filepath) from exc

    def _load_rules(self) -> Tuple[List[Label], List[Recommendation]]:
        with self._uow_factory() as uow:
            return uow.labels.get_all(), uow.recommendations.get_all()

    def _persist(
        self, command: CreatePrediction, label: Label, result: PredictionResult
    ) -> Prediction:
        now = utcnow()
        with self._uow_factory() as uow:
            mark_types = []
            for field_name, type_name in MASK_MARK_TYPES:
                mark_type = uow.mark_types.get_by_name(type_name)
                if mark_type is None:
                    raise PersistenceFailure(f"Mark type {type_name} is not configured")
                mark_types.append((field_name, mark_type))

            prediction = uow.predictions.create(
                Prediction(
                    id=str(uuid4()),
                    user_id=command.user_id,
                    image_id=command.image_id,
                    label=label,
                    plot_id=command.plot_id,
                    presence_confidence=result.presence,
                    absence_confidence=result.absence,
                    severity=result.severity,
                    created_at=now,
                )
            )
            prediction.marks = uow.marks.create_many(
                PredictionMark(
                    id=str(uuid4()),
                    data=getattr(result, field_name),
                    mark_type=mark_type,
                    prediction_id=prediction.id,
                    created_at=now,
                )
                for field_name, mark_type in mark_types
            )
        return prediction


class PredictionService:
    """Entry points the web layer uses for images and predictions."""

    def __init__(
        self,
        pipeline: PredictionPipeline,
        uow_factory: UnitOfWorkFactory,
        file_storage: FileStorage,
    ) -> None:
        self.pipeline = pipeline
        self._uow_factory = uow_factory
        self._storage = file_storage

    async def create(
        self, command: CreatePrediction, image_bytes: Optional[bytes] = None
    ) -> PipelineOutcome:
        return await self.pipeline.run(command, image_bytes)

    async def upload_image(self, user_id: str, filename: str, content: bytes) -> Image:
        image_id = str(uuid4())
        suffix = PurePosixPath(filename).suffix.lower() or ".jpg"
        path = f"{user_id}/images/{image_id}{suffix}"
        if await asyncio.to_thread(self._get_user, user_id) is None:
            raise NotFound("User", user_id)
        await asyncio.to_thread(self._storage.upload, path, content)
        try:
            return await asyncio.to_thread(
                self._create_image,
                Image(id=image_id, user_id=user_id, filename=filename, filepath=path),
            )
        except Exception:
            await asyncio.to_thread(self._storage.delete, path)
            raise

    def _get_user(self, user_id: str) -> Optional[User]:
        with self._uow_factory() as uow:
            return uow.users.get_by_id(user_id)

    def _create_image(self, image: Image) -> Image:
        with self._uow_factory() as uow:
            return uow.images.create(image)

    async def get(self, prediction_id: str) -> Prediction:
        prediction = await asyncio.to_thread(self._get, prediction_id)
        if prediction is None:
            raise NotFound("Prediction", prediction_id)
        return prediction

    def _get(self, prediction_id: str) -> Optional[Prediction]:
        with self._uow_factory() as uow:
            return uow.predictions.get_by_id(prediction_id)

    async def filter(
        self,
        criteria: PredictionFilter,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[int, int, int, List[Prediction]]:
        page, limit, offset = page_window(page, limit, DEFAULT_PAGE_SIZE)

        def query():
            with self._uow_factory() as uow:
                return uow.predictions.filter(criteria, offset, limit)

        total, items = await asyncio.to_thread(query)
        return total, page, limit, items

    async def recommendations_for(self, severity: float) -> List[Recommendation]:
        def query():
            with self._uow_factory() as uow:
                return uow.recommendations.get_all()

        return match_recommendations(severity, await asyncio.to_thread(query))

    async def reclassify(self, prediction_id: str) -> Prediction:
        """Match a stored prediction's severity against the current label set."""

        def update():
            with self._uow_factory() as uow:
                prediction = uow.predictions.get_by_id(prediction_id)
                if prediction is None:
                    raise NotFound("Prediction", prediction_id)
                label = classify_label(prediction.severity, uow.labels.get_all())
                if label.id == prediction.label.id:
                    return prediction
                logger.info(
                    "Prediction %s relabelled %s -> %s", prediction_id, prediction.label.name, label.name
                )
                prediction.label = label
                return uow.predictions.update(prediction)

        return await asyncio.to_thread(update)

    async def delete(self, prediction_id: str) -> Prediction:
        def remove():
            with self._uow_factory() as uow:
                return uow.predictions.delete(prediction_id)

        deleted = await asyncio.to_thread(remove)
        if deleted is None:
            raise NotFound("Prediction", prediction_id)
        return deleted
