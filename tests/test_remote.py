import json

import httpx
import pytest

from household_categorizer.classifiers.remote import EdgeFunctionClassifier
from household_categorizer.errors import ClassifierError, ClassifierTimeout, MalformedResponseError


def _classifier(handler) -> EdgeFunctionClassifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EdgeFunctionClassifier(url="http://edge/categorize", api_key="key", client=client)


@pytest.mark.anyio
async def test_classify_batch_sends_descriptions() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"categories": ["Groceries", " Transport "]})

    classifier = _classifier(handler)

    categories = await classifier.classify_batch(["WOOLWORTHS 1234", "OPAL"])

    assert categories == ["Groceries", "Transport"]
    assert seen["body"] == {"batchMode": True, "descriptions": ["WOOLWORTHS 1234", "OPAL"]}
    assert seen["auth"] == "Bearer key"
    await classifier.aclose()


@pytest.mark.anyio
async def test_rate_limit_is_reported_with_retry_after() -> None:
    classifier = _classifier(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))

    with pytest.raises(ClassifierError) as excinfo:
        await classifier.classify_batch(["A"])

    assert excinfo.value.rate_limited
    assert excinfo.value.retry_after == 7.0


@pytest.mark.anyio
@pytest.mark.parametrize("status", [500, 503])
async def test_server_errors_carry_status(status: int) -> None:
    classifier = _classifier(lambda request: httpx.Response(status))

    with pytest.raises(ClassifierError) as excinfo:
        await classifier.classify_batch(["A"])

    assert excinfo.value.status_code == status
    assert not excinfo.value.rate_limited


@pytest.mark.anyio
async def test_timeout_is_typed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ClassifierTimeout):
        await _classifier(handler).classify_batch(["A"])


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=["Groceries"]),
        httpx.Response(200, json={"category": "Groceries"}),
        httpx.Response(200, json={"categories": ["Groceries"]}),
        httpx.Response(200, json={"categories": [1, 2]}),
    ],
)
async def test_malformed_payloads_are_rejected(response: httpx.Response) -> None:
    classifier = _classifier(lambda request: response)

    with pytest.raises(MalformedResponseError):
        await classifier.classify_batch(["A", "B"])


@pytest.mark.anyio
async def test_missing_url_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CLASSIFIER_URL", raising=False)

    with pytest.raises(ClassifierError):
        await EdgeFunctionClassifier().classify_batch(["A"])
