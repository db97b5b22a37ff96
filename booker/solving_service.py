"""External challenge-solving providers.

Providers share one asynchronous job protocol: ``submit`` hands over the
challenge image and returns a job id, ``poll`` reports the job's status.
The coordinator only talks to this interface, so providers can be swapped
without touching its retry logic.
"""
import base64
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import httpx
from google import genai
from google.genai import types
from pydantic import BaseModel

from config import CHALLENGE_LENGTH, GEMINI_API_KEY, MODEL_NAME, SUBMIT_TIMEOUT, TWOCAPTCHA_URL
from errors import ServiceError

logger = logging.getLogger(__name__)

NOT_READY = "CAPCHA_NOT_READY"


class JobStatus(str, Enum):
    PENDING = "pending"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass(frozen=True)
class ChallengeParams:
    numeric: bool = True
    min_length: int = CHALLENGE_LENGTH
    max_length: int = CHALLENGE_LENGTH
    language: str = "en"

    def accepts(self, text: str) -> bool:
        if not self.min_length <= len(text) <= self.max_length:
            return False
        return text.isdigit() if self.numeric else bool(text)


@dataclass(frozen=True)
class PollResult:
    status: JobStatus
    text: Optional[str] = None


@dataclass
class ChallengeJob:
    """One challenge image and its life at the solving service. Single use."""
    artifact: bytes
    submitted_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    solved_text: Optional[str] = None


class ServiceResponse(BaseModel):
    status: int
    request: Union[str, int]
    error_text: Optional[str] = None


class SolvingService:
    """Capability interface for a solving provider."""

    name = "base"

    async def submit(self, artifact: bytes, params: ChallengeParams) -> str:
        raise NotImplementedError

    async def poll(self, job_id: str) -> PollResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class TwoCaptchaService(SolvingService):
    """2captcha-style ``in.php`` / ``res.php`` HTTP API."""

    name = "2captcha"

    def __init__(
        self,
        api_key: str,
        base_url: str = TWOCAPTCHA_URL,
        timeout: float = SUBMIT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def submit(self, artifact: bytes, params: ChallengeParams) -> str:
        data = {
            "key": self.api_key,
            "method": "base64",
            "body": base64.b64encode(artifact).decode("ascii"),
            "json": 1,
            "numeric": 1 if params.numeric else 0,
            "min_len": params.min_length,
            "max_len": params.max_length,
            "lang": params.language,
        }
        response = await self._call("POST", "/in.php", data=data)
        if response.status != 1:
            raise ServiceError(f"submit rejected: {response.error_text or response.request}")
        job_id = str(response.request)
        logger.info("[solver] submitted job %s", job_id)
        return job_id

    async def poll(self, job_id: str) -> PollResult:
        params = {"key": self.api_key, "action": "get", "id": job_id, "json": 1}
        response = await self._call("GET", "/res.php", params=params)
        if response.status == 1:
            return PollResult(JobStatus.SOLVED, str(response.request))
        if response.request == NOT_READY:
            return PollResult(JobStatus.PENDING)
        logger.warning("[solver] job %s failed: %s", job_id, response.error_text or response.request)
        return PollResult(JobStatus.FAILED, str(response.request))

    async def _call(self, method: str, url: str, **kwargs) -> ServiceResponse:
        try:
            resp = await self.client.request(method, url, **kwargs)
            resp.raise_for_status()
            return ServiceResponse.model_validate_json(resp.content)
        except httpx.HTTPError as e:
            raise ServiceError(f"{method} {url} failed: {e!r}") from e
        except ValueError as e:
            raise ServiceError(f"{method} {url} returned an unreadable body: {e}") from e

    async def aclose(self) -> None:
        await self.client.aclose()


class GeminiSolvingService(SolvingService):
    """Reads the challenge with a Gemini vision model.

    Recognition happens during submit; poll just reports the stored reading,
    which is never pending.
    """

    name = "gemini"

    PROMPT = (
        "The image is a verification challenge containing exactly {length} characters. "
        "Reply with those characters only, no spaces or punctuation.{digits}"
    )

    def __init__(self, api_key: str, model_name: str = MODEL_NAME, client=None):
        if client is None:
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model_name = model_name
        self._jobs: dict[str, PollResult] = {}

    async def submit(self, artifact: bytes, params: ChallengeParams) -> str:
        prompt = self.PROMPT.format(
            length=params.max_length,
            digits=" The characters are digits 0-9." if params.numeric else "",
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Content(
                        role="user",
                        parts=[
                            types.Part.from_bytes(data=artifact, mime_type="image/png"),
                            types.Part.from_text(text=prompt),
                        ],
                    )
                ],
                config=types.GenerateContentConfig(temperature=0.0),
            )
        except Exception as e:
            raise ServiceError(f"gemini request failed: {e}") from e

        text = re.sub(r"\s+", "", response.text or "")
        job_id = uuid.uuid4().hex
        if params.accepts(text):
            self._jobs[job_id] = PollResult(JobStatus.SOLVED, text)
        else:
            logger.warning("[solver] gemini reading %r does not fit the challenge", text)
            self._jobs[job_id] = PollResult(JobStatus.FAILED, text)
        logger.info("[solver] gemini job %s read %r", job_id, text)
        return job_id

    async def poll(self, job_id: str) -> PollResult:
        return self._jobs.pop(job_id, PollResult(JobStatus.FAILED, "unknown job"))


def create_service(settings) -> SolvingService:
    """Provider named in the profile's solver settings."""
    if settings.provider == "gemini":
        api_key = settings.api_key or GEMINI_API_KEY
        if not api_key:
            raise ServiceError("gemini solver needs an api_key in the profile or GEMINI_API_KEY")
        return GeminiSolvingService(api_key)
    return TwoCaptchaService(settings.api_key)
