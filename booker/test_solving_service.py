import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from booking_profile import SolverSettings
from errors import ServiceError
from solving_service import (
    ChallengeParams,
    GeminiSolvingService,
    JobStatus,
    TwoCaptchaService,
    create_service,
)


def service_with(handler) -> TwoCaptchaService:
    return TwoCaptchaService("secret", base_url="https://solver.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_submit_sends_numeric_four_digit_job():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"status": 1, "request": "73500123"})

    service = service_with(handler)
    job_id = await service.submit(b"png-bytes", ChallengeParams())
    await service.aclose()

    assert job_id == "73500123"
    assert seen["method"] == "POST"
    assert seen["path"] == "/in.php"
    form = seen["form"]
    assert form["key"] == "secret"
    assert form["method"] == "base64"
    assert base64.b64decode(form["body"]) == b"png-bytes"
    assert (form["numeric"], form["min_len"], form["max_len"], form["json"]) == ("1", "4", "4", "1")
    assert form["lang"] == "en"


@pytest.mark.asyncio
async def test_submit_rejected_raises_service_error():
    service = service_with(lambda r: httpx.Response(200, json={"status": 0, "request": "ERROR_ZERO_BALANCE"}))
    with pytest.raises(ServiceError, match="ERROR_ZERO_BALANCE"):
        await service.submit(b"png", ChallengeParams())


@pytest.mark.asyncio
async def test_http_failure_raises_service_error():
    service = service_with(lambda r: httpx.Response(503, text="busy"))
    with pytest.raises(ServiceError):
        await service.submit(b"png", ChallengeParams())


@pytest.mark.asyncio
async def test_network_timeout_raises_service_error():
    def handler(request):
        raise httpx.ConnectTimeout("too slow", request=request)

    with pytest.raises(ServiceError):
        await service_with(handler).submit(b"png", ChallengeParams())


@pytest.mark.asyncio
@pytest.mark.parametrize("body, status, text", [
    ({"status": 0, "request": "CAPCHA_NOT_READY"}, JobStatus.PENDING, None),
    ({"status": 1, "request": "4821"}, JobStatus.SOLVED, "4821"),
    ({"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"}, JobStatus.FAILED, "ERROR_CAPTCHA_UNSOLVABLE"),
])
async def test_poll_statuses(body, status, text):
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, content=json.dumps(body))

    result = await service_with(handler).poll("73500123")

    assert result.status == status
    assert result.text == text
    assert seen["params"] == {"key": "secret", "action": "get", "id": "73500123", "json": "1"}


def test_challenge_params_accepts():
    params = ChallengeParams()
    assert params.accepts("0123")
    assert not params.accepts("123")
    assert not params.accepts("12a4")


def fake_genai(text):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    return client


@pytest.mark.asyncio
async def test_gemini_service_solves_immediately():
    service = GeminiSolvingService("key", client=fake_genai(" 12 34\n"))

    job_id = await service.submit(b"png", ChallengeParams())
    result = await service.poll(job_id)

    assert result.status == JobStatus.SOLVED
    assert result.text == "1234"


@pytest.mark.asyncio
async def test_gemini_service_rejects_wrong_shape():
    service = GeminiSolvingService("key", client=fake_genai("12345"))

    result = await service.poll(await service.submit(b"png", ChallengeParams()))

    assert result.status == JobStatus.FAILED


def test_create_service_picks_provider():
    assert isinstance(create_service(SolverSettings(provider="2captcha", api_key="k")), TwoCaptchaService)


def test_create_gemini_service_without_key(monkeypatch):
    monkeypatch.setattr("solving_service.GEMINI_API_KEY", None)
    with pytest.raises(ServiceError, match="api_key"):
        create_service(SolverSettings(provider="gemini"))
