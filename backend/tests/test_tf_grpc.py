import asyncio
import threading

import numpy as np
import pytest

pytest.importorskip("tensorflow_serving")

import grpc  # noqa: E402
from tensorflow_serving.apis import get_model_status_pb2, predict_pb2  # noqa: E402

from plantdx.errors import InferenceInvalidResponse, InferenceUnavailable  # noqa: E402
from plantdx.services.inference.tf_grpc import (  # noqa: E402
    AVAILABLE_STATE,
    INPUT_NAME,
    TensorFlowServingGrpcClient,
    array_to_tensor,
    tensor_to_array,
)

from helpers import png_bytes  # noqa: E402


class FakeChannel:
    """Answers every unary call with the response (or error) registered for its method."""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def unary_unary(self, method, *args, **kwargs):
        async def call(request, timeout=None):
            self.requests.append((method, request, timeout))
            outcome = self.responses[method.rsplit("/", 1)[-1]]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        return call

    async def close(self):
        return None


def rpc_error(code):
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details="test")


def make_client(**kwargs):
    channel = FakeChannel()
    client = TensorFlowServingGrpcClient(
        "tf:8500", "leaf", image_size=4, timeout_seconds=2.0, channel=channel, **kwargs
    )
    return client, channel


def predict_response(leaf, lesion):
    response = predict_pb2.PredictResponse()
    response.outputs["output_0"].CopyFrom(array_to_tensor(leaf))
    response.outputs["output_1"].CopyFrom(array_to_tensor(lesion))
    return response


def test_tensor_to_array_rejects_wrong_value_count():
    tensor = array_to_tensor(np.zeros((1, 2, 2, 1), dtype=np.float32))
    tensor.tensor_content = np.zeros(3, dtype=np.float32).tobytes()
    with pytest.raises(InferenceInvalidResponse):
        tensor_to_array(tensor, "grpc_test")


def test_predict_sends_model_spec_and_input():
    client, channel = make_client(model_version=2)
    lesion = np.zeros((1, 4, 4, 1), dtype=np.float32)
    lesion[0, :2] = 0.9
    channel.responses["Predict"] = predict_response(np.full((1, 4, 4, 1), 0.9, np.float32), lesion)

    result = asyncio.run(client.predict(png_bytes()))

    _, request, timeout = channel.requests[0]
    assert request.model_spec.name == "leaf"
    assert request.model_spec.version.value == 2
    assert tensor_to_array(request.inputs[INPUT_NAME], "grpc_test").shape == (1, 4, 4, 3)
    assert timeout == 2.0
    assert result.severity == pytest.approx(0.5)


def test_missing_output_is_invalid():
    client, channel = make_client()
    response = predict_pb2.PredictResponse()
    response.outputs["output_0"].CopyFrom(array_to_tensor(np.zeros((1, 4, 4, 1), np.float32)))
    channel.responses["Predict"] = response
    with pytest.raises(InferenceInvalidResponse):
        asyncio.run(client.predict(png_bytes()))


@pytest.mark.parametrize(
    "code, expected",
    [
        (grpc.StatusCode.UNAVAILABLE, InferenceUnavailable),
        (grpc.StatusCode.DEADLINE_EXCEEDED, InferenceUnavailable),
        (grpc.StatusCode.RESOURCE_EXHAUSTED, InferenceUnavailable),
        (grpc.StatusCode.INVALID_ARGUMENT, InferenceInvalidResponse),
        (grpc.StatusCode.NOT_FOUND, InferenceInvalidResponse),
    ],
)
def test_status_codes_map_to_failure_kinds(code, expected):
    client, channel = make_client()
    channel.responses["Predict"] = rpc_error(code)
    with pytest.raises(expected):
        asyncio.run(client.predict(png_bytes()))


def test_health_check_reads_model_status():
    client, channel = make_client()
    status = get_model_status_pb2.GetModelStatusResponse()
    status.model_version_status.add(version=1, state=AVAILABLE_STATE)
    channel.responses["GetModelStatus"] = status
    asyncio.run(client.health_check())

    channel.responses["GetModelStatus"] = get_model_status_pb2.GetModelStatusResponse()
    with pytest.raises(InferenceUnavailable):
        asyncio.run(client.health_check())


def test_request_and_response_conversion_run_off_the_event_loop(monkeypatch):
    from plantdx.services.inference import tf_grpc

    threads = {}

    def recording(name, func):
        def wrapper(*args, **kwargs):
            threads[name] = threading.get_ident()
            return func(*args, **kwargs)

        return wrapper

    monkeypatch.setattr(tf_grpc, "preprocess_image", recording("pre", tf_grpc.preprocess_image))
    monkeypatch.setattr(
        tf_grpc, "build_prediction_result", recording("post", tf_grpc.build_prediction_result)
    )
    client, channel = make_client()
    leaf = np.full((1, 4, 4, 1), 0.9, np.float32)
    lesion = np.zeros_like(leaf)
    lesion[0, :2] = 0.9
    channel.responses["Predict"] = predict_response(leaf, lesion)

    async def scenario():
        loop_thread = threading.get_ident()
        await client.predict(png_bytes())
        return loop_thread

    loop_thread = asyncio.run(scenario())
    assert set(threads) == {"pre", "post"}
    assert loop_thread not in threads.values()
