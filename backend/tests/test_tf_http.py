import asyncio
import threading

import numpy as np
import pytest
import requests

from plantdx.errors import InferenceInvalidResponse, InferenceUnavailable, InvalidImage
from plantdx.services.inference.tf_http import TensorFlowServingHttpClient

from helpers import png_bytes, probability_map


class StubResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class StubSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []
        self.closed = False

    def _respond(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def post(self, url, json=None, timeout=None):
        self.calls.append(("post", url, json, timeout))
        return self._respond()

    def get(self, url, timeout=None):
        self.calls.append(("get", url, None, timeout))
        return self._respond()

    def close(self):
        self.closed = True


def make_client(outcome, **kwargs):
    session = StubSession(outcome)
    options = dict(base_url="http://tf:8501/", model_name="leaf", image_size=4, timeout_seconds=5.0)
    options.update(kwargs)
    return TensorFlowServingHttpClient(session=session, **options), session


def model_output():
    lesion = np.full((4, 4), 0.1)
    lesion[:, :1] = 0.8
    return {
        "predictions": [
            {
                "output_0": probability_map(np.full((4, 4), 0.9)),
                "output_1": probability_map(lesion),
            }
        ]
    }


def test_predict_posts_instances_and_builds_result():
    client, session = make_client(StubResponse(200, model_output()))
    result = asyncio.run(client.predict(png_bytes()))

    method, url, payload, timeout = session.calls[0]
    assert (method, url, timeout) == ("post", "http://tf:8501/v1/models/leaf:predict", 5.0)
    assert np.asarray(payload["instances"]).shape == (1, 4, 4, 3)
    assert result.severity == pytest.approx(0.25)
    assert result.presence == pytest.approx(0.8, abs=1e-6)
    assert result.absence == pytest.approx(0.2, abs=1e-6)


def test_pinned_model_version_is_part_of_url():
    client, session = make_client(StubResponse(200, model_output()), model_version=3)
    asyncio.run(client.predict(png_bytes()))
    assert session.calls[0][1] == "http://tf:8501/v1/models/leaf/versions/3:predict"


@pytest.mark.parametrize(
    "outcome",
    [
        requests.Timeout("slow"),
        requests.ConnectionError("refused"),
        StubResponse(503, {"error": "overloaded"}),
        StubResponse(500, {"error": "boom"}),
        StubResponse(429, {"error": "throttled"}),
    ],
)
def test_transient_failures_are_unavailable(outcome):
    client, _ = make_client(outcome)
    with pytest.raises(InferenceUnavailable) as info:
        asyncio.run(client.predict(png_bytes()))
    assert info.value.retryable
    assert str(info.value).startswith("tensorflow_serving: ")


@pytest.mark.parametrize(
    "outcome",
    [
        StubResponse(400, {"error": "bad input tensor"}),
        StubResponse(404, {"error": "no such model"}),
        StubResponse(200, ValueError("not json")),
        StubResponse(200, {"predictions": []}),
        StubResponse(200, {"predictions": [{"output_0": [[0.5]]}]}),
        StubResponse(200, {"unexpected": True}),
        StubResponse(200, {"predictions": [{"output_0": [0.1], "output_1": [0.2]}]}),
    ],
)
def test_malformed_answers_are_invalid_responses(outcome):
    client, _ = make_client(outcome)
    with pytest.raises(InferenceInvalidResponse) as info:
        asyncio.run(client.predict(png_bytes()))
    assert not info.value.retryable


def test_undecodable_image_never_reaches_server():
    client, session = make_client(StubResponse(200, model_output()))
    with pytest.raises(InvalidImage):
        asyncio.run(client.predict(b"garbage"))
    assert session.calls == []


def test_health_check_requires_available_version():
    healthy, session = make_client(
        StubResponse(200, {"model_version_status": [{"version": "1", "state": "AVAILABLE"}]})
    )
    asyncio.run(healthy.health_check())
    assert session.calls[0][:2] == ("get", "http://tf:8501/v1/models/leaf")

    loading, _ = make_client(
        StubResponse(200, {"model_version_status": [{"version": "1", "state": "LOADING"}]})
    )
    with pytest.raises(InferenceUnavailable):
        asyncio.run(loading.health_check())


def test_close_releases_session():
    client, session = make_client(StubResponse(200, model_output()))
    asyncio.run(client.close())
    assert session.closed


def test_image_and_mask_work_runs_off_the_event_loop(monkeypatch):
    from plantdx.services.inference import tf_http

    threads = {}

    def recording(name, func):
        def wrapper(*args, **kwargs):
            threads[name] = threading.get_ident()
            return func(*args, **kwargs)

        return wrapper

    monkeypatch.setattr(tf_http, "preprocess_image", recording("pre", tf_http.preprocess_image))
    monkeypatch.setattr(
        tf_http, "build_prediction_result", recording("post", tf_http.build_prediction_result)
    )
    client, _ = make_client(StubResponse(200, model_output()))

    async def scenario():
        loop_thread = threading.get_ident()
        await client.predict(png_bytes())
        return loop_thread

    loop_thread = asyncio.run(scenario())
    assert set(threads) == {"pre", "post"}
    assert loop_thread not in threads.values()
