from __future__ import annotations

from collections import deque
from typing import Deque, Union

import numpy as np

from ...models.entities import PredictionResult
from .base import InferenceClient
from .common import encode_mask


def default_prediction() -> PredictionResult:
    blank = encode_mask(np.zeros((8, 8), dtype=np.uint8))
    return PredictionResult(
        presence=0.75,
        absence=0.25,
        severity=0.45,
        leaf_mask=blank,
        lesion_mask=blank,
    )


class MockInferenceClient(InferenceClient):
    """Answers with queued results (or exceptions), then with a fixed default."""

    name = "mock_model_client"

    def __init__(self, concurrency_limit: int = 4) -> None:
        super().__init__(concurrency_limit)
        self._responses: Deque[Union[PredictionResult, Exception]] = deque()
        self.call_count = 0

    def push_response(self, response: Union[PredictionResult, Exception]) -> None:
        self._responses.append(response)

    async def _predict(self, image_bytes: bytes) -> PredictionResult:
        self.call_count += 1
        if not self._responses:
            return default_prediction()
        response = self._responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    async def health_check(self) -> None:
        return None
