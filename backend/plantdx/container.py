"""Wires settings, storage and the inference binding into the service objects."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .config import Settings
from .db import create_engine_with_retry, make_session_factory
from .repositories.sql import SqlUnitOfWork
from .services import DashboardAggregator, PlotStatsAssembler, PredictionPipeline, PredictionService
from .services.inference import InferenceClient, create_inference_client
from .services.job_store import RunStore
from .services.storage import FileStorage, LocalFileStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: Engine
    inference: InferenceClient
    storage: FileStorage
    runs: RunStore
    predictions: PredictionService
    dashboard: DashboardAggregator
    plots: PlotStatsAssembler

    async def close(self) -> None:
        await self.inference.close()
        self.engine.dispose()


def build_services(
    settings: Settings,
    engine: Optional[Engine] = None,
    inference: Optional[InferenceClient] = None,
    storage: Optional[FileStorage] = None,
) -> Services:
    engine = engine or create_engine_with_retry(settings.database_url)
    session_factory = make_session_factory(engine)

    def uow_factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory)

    inference = inference or create_inference_client(settings)
    storage = storage or LocalFileStorage(settings.storage_dir)
    runs = RunStore(settings.run_history_size)
    pipeline = PredictionPipeline(
        uow_factory,
        inference,
        storage,
        runs=runs,
        retries=settings.inference_retries,
        backoff_seconds=settings.backoff_seconds,
    )
    logger.info(
        "Services ready (inference=%s, retries=%d)", inference.name, settings.inference_retries
    )
    return Services(
        settings=settings,
        engine=engine,
        inference=inference,
        storage=storage,
        runs=runs,
        predictions=PredictionService(pipeline, uow_factory, storage),
        dashboard=DashboardAggregator(uow_factory),
        plots=PlotStatsAssembler(uow_factory),
    )
