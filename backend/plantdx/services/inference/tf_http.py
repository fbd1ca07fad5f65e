"""TensorFlow Serving REST binding."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import requests

from ...errors import InferenceInvalidResponse, InferenceUnavailable
from ...models.entities import PredictionResult
from .base import InferenceClient
from .common import build_prediction_result, preprocess_image

logger = logging.getLogger(__name__)

RETRY_LATER_STATUSES = {408, 429}


class TensorFlowServingHttpClient(InferenceClient):
    name = "tensorflow_serving"

    def __init__(
        self,
        base_url: str,
        model_name: str,
        model_version: Optional[int] = None,
        timeout_seconds: float = 30.0,
        image_size: int = 256,
        concurrency_limit: int = 4,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(concurrency_limit)
        self._base_url = base_url.rstrip("/")
        self._model_name = model_name
        self._model_version = model_version
        self._timeout = timeout_seconds
        self._image_size = image_size
        self._session = session or requests.Session()

    @property
    def model_url(self) -> str:
        url = f"{self._base_url}/v1/models/{self._model_name}"
        if self._model_version is not None:
            url = f"{url}/versions/{self._model_version}"
        return url

    async def _predict(self, image_bytes: bytes) -> PredictionResult:
        payload = await asyncio.to_thread(self._build_payload, image_bytes)
        response = await asyncio.to_thread(self._send, "post", f"{self.model_url}:predict", payload)
        body = await asyncio.to_thread(self._parse_json, response)

        predictions = body.get("predictions") if isinstance(body, dict) else None
        if not predictions:
            raise InferenceInvalidResponse("Model returned no predictions", self.name)
        prediction = predictions[0]
        if not isinstance(prediction, dict) or "output_0" not in prediction or "output_1" not in prediction:
            raise InferenceInvalidResponse("Prediction is missing output_0/output_1", self.name)
        return await asyncio.to_thread(
            build_prediction_result, prediction["output_0"], prediction["output_1"], self.name
        )

    def _build_payload(self, image_bytes: bytes) -> dict:
        tensor = preprocess_image(image_bytes, self._image_size)
        return {"instances": [tensor.tolist()]}

    async def health_check(self) -> None:
        response = await asyncio.to_thread(self._send, "get", self.model_url, None)
        body = self._parse_json(response)
        statuses = body.get("model_version_status", []) if isinstance(body, dict) else []
        if not any(status.get("state") == "AVAILABLE" for status in statuses):
            raise InferenceUnavailable("Model is not in AVAILABLE state", self.name)

    async def close(self) -> None:
        self._session.close()

    def _send(self, method: str, url: str, payload: Optional[dict]) -> requests.Response:
        try:
            if method == "post":
                response = self._session.post(url, json=payload, timeout=self._timeout)
            else:
                response = self._session.get(url, timeout=self._timeout)
        except requests.Timeout as exc:
            raise InferenceUnavailable(f"Request to {url} timed out", self.name) from exc
        except requests.ConnectionError as exc:
            raise InferenceUnavailable(f"Failed to connect to {url}: {exc}", self.name) from exc
        except requests.RequestException as exc:
            raise InferenceInvalidResponse(f"Request to {url} failed: {exc}", self.name) from exc

        if response.status_code >= 500 or response.status_code in RETRY_LATER_STATUSES:
            raise InferenceUnavailable(f"HTTP {response.status_code} from {url}", self.name)
        if response.status_code >= 400:
            logger.warning("Model server rejected request: %s %s", response.status_code, response.text[:200])
            raise InferenceInvalidResponse(f"HTTP {response.status_code} from {url}", self.name)
        return response

    def _parse_json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise InferenceInvalidResponse(f"Failed to parse response: {exc}", self.name) from exc
