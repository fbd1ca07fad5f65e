from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ...models.entities import PredictionResult


class InferenceClient(ABC):
    """Disease detector port.

    Implementations never retry; they bound in-flight calls with a semaphore
    and raise ``InferenceUnavailable`` or ``InferenceInvalidResponse``.
    """

    name = "model_serving"

    def __init__(self, concurrency_limit: int = 4) -> None:
        self._semaphore = asyncio.Semaphore(concurrency_limit)

    async def predict(self, image_bytes: bytes) -> PredictionResult:
        async with self._semaphore:
            return await self._predict(image_bytes)

    @abstractmethod
    async def _predict(self, image_bytes: bytes) -> PredictionResult: ...

    @abstractmethod
    async def health_check(self) -> None:
        """Raise ``InferenceUnavailable`` unless the model can serve requests."""

    async def close(self) -> None:
        return None
