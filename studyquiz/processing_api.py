"""
Client for the document processing API (ingestion, concept extraction, quiz generation).

Only three calls are made: a best-effort wake-up ping, the process trigger
(retried with exponential backoff), and quiz generation.
"""
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import requests
from dotenv import load_dotenv

from engine import (
    QUESTIONS_PER_CONCEPT,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_DELAY_MS,
    RETRY_MAX_RETRIES,
    WAKE_UP_TIMEOUT_SECONDS,
)
from studyquiz.errors import RejectedError, TransientServiceError
from studyquiz.models import GenerationTicket

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_API_URL = "http://localhost:8000/api/v1"


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = RETRY_MAX_RETRIES
    base_delay_ms: int = RETRY_BASE_DELAY_MS
    max_delay_ms: int = RETRY_MAX_DELAY_MS
    timeout_s: float = REQUEST_TIMEOUT_SECONDS

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms)


@dataclass
class TriggerResult:
    success: bool
    error: Optional[str] = None
    retries: int = 0


def post_within_deadline(
    http: requests.Session,
    url: str,
    timeout_s: float,
    clock: Callable[[], float] = time.monotonic,
    **kwargs,
) -> Tuple[requests.Response, str]:
    """
    POST to url and read the whole body before timeout_s has elapsed.

    requests' timeout only bounds each socket operation, so the body is streamed
    and the deadline checked between reads. Raises requests.Timeout once it passes.
    """
    deadline = clock() + timeout_s
    response = http.post(url, timeout=timeout_s, stream=True, **kwargs)
    body = bytearray()
    try:
        # one byte per read so a trickling server cannot hold a read past the deadline
        for chunk in response.iter_content(chunk_size=1):
            if clock() > deadline:
                raise requests.Timeout(f"No complete response within {timeout_s}s")
            body.extend(chunk)
        if clock() > deadline:
            raise requests.Timeout(f"No complete response within {timeout_s}s")
    finally:
        response.close()
    return response, body.decode(response.encoding or "utf-8", errors="replace")


def post_with_retry(
    http: requests.Session,
    url: str,
    config: RetryConfig = RetryConfig(),
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> TriggerResult:
    """
    POST to url, retrying transient failures with exponential backoff.

    2xx succeeds. 4xx fails at once with the server's message. 5xx, connection
    errors and timeouts are retried up to config.max_retries times; the final
    failure carries the last error's message. Each attempt, body included, must
    finish within config.timeout_s.
    """
    last_error = "Unknown error"
    for attempt in range(config.max_retries + 1):
        try:
            response, text = post_within_deadline(http, url, config.timeout_s, clock)
        except requests.Timeout:
            last_error = "Request timed out"
        except requests.RequestException as e:
            last_error = str(e) or e.__class__.__name__
        else:
            if 200 <= response.status_code < 300:
                return TriggerResult(success=True, retries=attempt)
            if 400 <= response.status_code < 500:
                body = text or "Unknown error"
                return TriggerResult(success=False, error=f"Server rejected request: {body}", retries=attempt)
            detail = text or response.reason or ""
            last_error = f"Server error {response.status_code}" + (f": {detail}" if detail else "")

        if attempt < config.max_retries:
            delay = config.delay_ms(attempt)
            logger.warning(
                f"Request to {url} failed (attempt {attempt + 1}/{config.max_retries + 1}): {last_error}, retrying in {delay}ms..."
            )
            sleep(delay / 1000)

    return TriggerResult(success=False, error=last_error, retries=config.max_retries)


class ProcessingAPIClient:
    """Wrapper around the processing API. One requests.Session per client."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        http: Optional[requests.Session] = None,
        retry: RetryConfig = RetryConfig(),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_url = (api_url or os.getenv("API_URL") or DEFAULT_API_URL).rstrip("/")
        self.http = http or requests.Session()
        self.retry = retry
        self.sleep = sleep
        self.clock = clock

    @property
    def root_url(self) -> str:
        if self.api_url.endswith("/api/v1"):
            return self.api_url[: -len("/api/v1")] + "/"
        return self.api_url + "/"

    def wake_up(self) -> bool:
        """Ping the API root so a cold backend starts before it is needed. Never raises."""
        try:
            response = self.http.get(self.root_url, timeout=WAKE_UP_TIMEOUT_SECONDS)
            return response.ok
        except requests.RequestException as e:
            logger.warning(f"Backend wake-up ping failed (may be cold starting): {e}")
            return False

    def trigger_processing(self, document_id: str) -> TriggerResult:
        url = f"{self.api_url}/documents/process/{document_id}"
        result = post_with_retry(self.http, url, self.retry, self.sleep, self.clock)
        if result.success:
            logger.info(f"Processing triggered for document {document_id}")
        else:
            logger.error(f"Failed to trigger processing for {document_id}: {result.error}")
        return result

    def generate_quiz(
        self,
        document_id: str,
        questions_per_concept: int = QUESTIONS_PER_CONCEPT,
        include_hints: bool = True,
    ) -> GenerationTicket:
        """
        Ask the API to generate a quiz for a processed document.

        Raises:
            RejectedError: 4xx response
            TransientServiceError: network failure, timeout or 5xx
        """
        payload = {
            "document_id": document_id,
            "questions_per_concept": questions_per_concept,
            "include_hints": include_hints,
        }
        try:
            response, text = post_within_deadline(
                self.http,
                f"{self.api_url}/quizzes/generate",
                self.retry.timeout_s,
                self.clock,
                json=payload,
            )
        except requests.Timeout as e:
            raise TransientServiceError("Request timed out") from e
        except requests.RequestException as e:
            logger.error(f"Error triggering quiz generation: {e}")
            raise TransientServiceError(f"Failed to trigger quiz generation: {e}") from e

        if 400 <= response.status_code < 500:
            raise RejectedError(f"Server rejected request: {text or response.status_code}")
        if not response.ok:
            raise TransientServiceError(f"Failed to trigger quiz generation ({response.status_code})")

        ticket = GenerationTicket.model_validate_json(text)
        logger.info(f"Quiz generation started for document {document_id}: quiz {ticket.quiz_id} ({ticket.status})")
        return ticket
