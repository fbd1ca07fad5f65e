"""TensorFlow Serving gRPC binding.

Needs the ``grpc`` extra (``grpcio`` and ``tensorflow-serving-api``); the
module is only imported when ``INFERENCE_BACKEND=grpc``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import grpc
import numpy as np
from tensorflow.core.framework import tensor_pb2, tensor_shape_pb2, types_pb2
from tensorflow_serving.apis import (
    get_model_status_pb2,
    model_service_pb2_grpc,
    predict_pb2,
    prediction_service_pb2_grpc,
)

from ...errors import InferenceInvalidResponse, InferenceUnavailable
from ...models.entities import PredictionResult
from .base import InferenceClient
from .common import build_prediction_result, preprocess_image

logger = logging.getLogger(__name__)

INPUT_NAME = "input_1"
LEAF_OUTPUT = "output_0"
LESION_OUTPUT = "output_1"
AVAILABLE_STATE = 30  # ModelVersionStatus.State.AVAILABLE

RETRY_LATER_CODES = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.ABORTED,
}


def tensor_to_array(tensor: Any, integration: str) -> np.ndarray:
    """Rebuild an ndarray from a ``TensorProto`` holding float data."""
    dims = [int(dim.size) for dim in tensor.tensor_shape.dim]
    if len(dims) < 3:
        raise InferenceInvalidResponse(f"Invalid tensor shape dimensions: {len(dims)}", integration)
    if len(tensor.float_val):
        flat = np.asarray(tensor.float_val, dtype=np.float32)
    elif tensor.tensor_content:
        flat = np.frombuffer(tensor.tensor_content, dtype=np.float32)
    else:
        raise InferenceInvalidResponse("Empty tensor data in response", integration)
    if flat.size != int(np.prod(dims)):
        raise InferenceInvalidResponse(
            f"Tensor holds {flat.size} values, shape {dims} needs {int(np.prod(dims))}", integration
        )
    return flat.reshape(dims)


def array_to_tensor(array: np.ndarray) -> tensor_pb2.TensorProto:
    shape = tensor_shape_pb2.TensorShapeProto(
        dim=[tensor_shape_pb2.TensorShapeProto.Dim(size=size) for size in array.shape]
    )
    return tensor_pb2.TensorProto(
        dtype=types_pb2.DT_FLOAT,
        tensor_shape=shape,
        tensor_content=np.ascontiguousarray(array, dtype=np.float32).tobytes(),
    )


class TensorFlowServingGrpcClient(InferenceClient):
    name = "tensorflow_serving_grpc"

    def __init__(
        self,
        target: str,
        model_name: str,
        model_version: Optional[int] = None,
        timeout_seconds: float = 30.0,
        image_size: int = 256,
        concurrency_limit: int = 4,
        channel: Optional[grpc.aio.Channel] = None,
    ) -> None:
        super().__init__(concurrency_limit)
        # channels connect lazily, on the first call
        self._channel = channel or grpc.aio.insecure_channel(
            target,
            options=[
                ("grpc.keepalive_time_ms", 30_000),
                ("grpc.keepalive_timeout_ms", 10_000),
                ("grpc.max_receive_message_length", 64 * 1024 * 1024),
            ],
        )
        self._prediction_stub = prediction_service_pb2_grpc.PredictionServiceStub(self._channel)
        self._model_stub = model_service_pb2_grpc.ModelServiceStub(self._channel)
        self._model_name = model_name
        self._model_version = model_version
        self._timeout = timeout_seconds
        self._image_size = image_size

    def _model_spec(self, spec) -> None:
        spec.name = self._model_name
        if self._model_version is not None:
            spec.version.value = self._model_version

    async def _predict(self, image_bytes: bytes) -> PredictionResult:
        request = await asyncio.to_thread(self._build_request, image_bytes)
        try:
            response = await self._prediction_stub.Predict(request, timeout=self._timeout)
        except grpc.aio.AioRpcError as exc:
            raise self._map_rpc_error(exc, "gRPC prediction failed") from exc
        return await asyncio.to_thread(self._read_response, response)

    def _build_request(self, image_bytes: bytes) -> predict_pb2.PredictRequest:
        tensor = preprocess_image(image_bytes, self._image_size)
        request = predict_pb2.PredictRequest()
        self._model_spec(request.model_spec)
        request.inputs[INPUT_NAME].CopyFrom(array_to_tensor(tensor[np.newaxis, ...]))
        return request

    def _read_response(self, response: predict_pb2.PredictResponse) -> PredictionResult:
        outputs = {}
        for key in (LEAF_OUTPUT, LESION_OUTPUT):
            if key not in response.outputs:
                raise InferenceInvalidResponse(f"Missing {key} in gRPC response", self.name)
            outputs[key] = tensor_to_array(response.outputs[key], self.name)
        return build_prediction_result(outputs[LEAF_OUTPUT], outputs[LESION_OUTPUT], self.name)

    async def health_check(self) -> None:
        request = get_model_status_pb2.GetModelStatusRequest()
        self._model_spec(request.model_spec)
        try:
            response = await self._model_stub.GetModelStatus(request, timeout=self._timeout)
        except grpc.aio.AioRpcError as exc:
            raise self._map_rpc_error(exc, "Health check failed") from exc

        if not response.model_version_status:
            raise InferenceUnavailable("No model versions available", self.name)
        if not any(status.state == AVAILABLE_STATE for status in response.model_version_status):
            raise InferenceUnavailable("Model is not in AVAILABLE state", self.name)

    async def close(self) -> None:
        await self._channel.close()

    def _map_rpc_error(self, exc: grpc.aio.AioRpcError, context: str):
        message = f"{context}: {exc.code().name} {exc.details()}"
        if exc.code() in RETRY_LATER_CODES:
            return InferenceUnavailable(message, self.name)
        logger.warning("Model server rejected request: %s", message)
        return InferenceInvalidResponse(message, self.name)
