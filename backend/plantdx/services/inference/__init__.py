"""Model-serving bindings behind one ``InferenceClient`` interface."""
from __future__ import annotations

import logging

from ...config import Settings
from .base import InferenceClient
from .tf_http import TensorFlowServingHttpClient
from .mock import MockInferenceClient

logger = logging.getLogger(__name__)


def create_inference_client(settings: Settings) -> InferenceClient:
    """Build the binding selected by ``INFERENCE_BACKEND``."""
    if settings.inference_backend == "grpc":
        from .tf_grpc import TensorFlowServingGrpcClient

        client: InferenceClient = TensorFlowServingGrpcClient(
            target=settings.tf_serving_grpc_url,
            model_name=settings.model_name,
            model_version=settings.model_version,
            timeout_seconds=settings.timeout_seconds,
            image_size=settings.image_size,
            concurrency_limit=settings.concurrency_limit,
        )
    elif settings.inference_backend == "mock":
        client = MockInferenceClient(concurrency_limit=settings.concurrency_limit)
    else:
        client = TensorFlowServingHttpClient(
            base_url=settings.tf_serving_url,
            model_name=settings.model_name,
            model_version=settings.model_version,
            timeout_seconds=settings.timeout_seconds,
            image_size=settings.image_size,
            concurrency_limit=settings.concurrency_limit,
        )
    logger.info("Using %s inference binding", client.name)
    return client


__all__ = [
    "InferenceClient",
    "MockInferenceClient",
    "TensorFlowServingHttpClient",
    "create_inference_client",
]
