"""
Provider client interface for video generation tasks.
Each provider maps its own status vocabulary onto TASK_GENERATING | TASK_COMPLETED | TASK_FAILED.
HTTP policy shared by all providers: retry 429/5xx/network errors with exponential backoff, honour Retry-After.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from autopilot.errors import PollTimeoutError, ProviderError, ProviderTaskNotFoundError, TaskFailedError
from autopilot.logging_config import get_logger

logger = get_logger(__name__)

TASK_GENERATING = "generating"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"

ASPECT_PORTRAIT = "9:16"
ASPECT_LANDSCAPE = "16:9"

DEFAULT_MAX_POLL_ATTEMPTS = 120
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
MAX_BACKOFF_SECONDS = 30.0

ProgressCallback = Callable[[int, "TaskDetail"], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class CreateTaskOptions:
    """Options for one task creation call."""

    model: str
    duration: int = 10
    remove_watermark: bool = True
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class CreatedTask:
    task_id: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskDetail:
    """Current state of a provider task, already mapped to the internal vocabulary."""

    task_id: str
    state: str
    raw_state: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    progress: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (TASK_COMPLETED, TASK_FAILED)


def describe_http_error(status_code: int, provider: str, body: str = "") -> str:
    """Human-readable message for a provider HTTP error status."""
    if status_code == 401:
        return f"{provider}: authentication failed, check the API key"
    if status_code == 402:
        return f"{provider}: insufficient credits"
    if status_code == 404:
        return f"{provider}: task not found"
    if status_code == 422:
        return f"{provider}: invalid request parameters {body[:200]}".rstrip()
    if status_code == 429:
        return f"{provider}: rate limit exceeded"
    if status_code == 455:
        return f"{provider}: service under maintenance"
    if status_code >= 500:
        return f"{provider}: server error ({status_code})"
    return f"{provider}: request failed ({status_code}) {body[:200]}".rstrip()


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Retry-After header in seconds (numeric form only)."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class VideoProviderClient(ABC):
    """Base class: concrete providers implement create_task and get_task_status."""

    name: str = "provider"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @abstractmethod
    async def create_task(self, prompt: str, aspect_ratio: str, options: CreateTaskOptions) -> CreatedTask:
        """Start a generation task; returns the provider task id."""

    @abstractmethod
    async def get_task_status(self, task_id: str) -> TaskDetail:
        """Fetch the task once. Raises ProviderTaskNotFoundError on 404."""

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send a request with bounded retries on 429/5xx/network errors.
        Returns parsed JSON; raises ProviderError (or ProviderTaskNotFoundError on 404).
        """
        delay = self.retry_delay_seconds
        last_error: Optional[ProviderError] = None
        for attempt in range(1, self.max_retries + 1):
            wait = delay
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                last_error = ProviderError(f"{self.name}: network error: {e}", retryable=True)
            else:
                if resp.status_code < 400:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise ProviderError(f"{self.name}: invalid JSON response") from e
                message = describe_http_error(resp.status_code, self.name, resp.text)
                if resp.status_code == 404:
                    raise ProviderTaskNotFoundError(message)
                retryable = resp.status_code == 429 or resp.status_code >= 500
                last_error = ProviderError(message, status_code=resp.status_code, retryable=retryable)
                if not retryable:
                    raise last_error
                wait = retry_after_seconds(resp) or delay
            if attempt < self.max_retries:
                logger.warning(
                    "provider.request_retry",
                    provider=self.name,
                    path=path,
                    attempt=attempt,
                    wait_seconds=wait,
                    error=str(last_error),
                )
                await asyncio.sleep(min(wait, MAX_BACKOFF_SECONDS))
                delay *= 2
        if last_error is None:
            raise ProviderError(f"{self.name}: no request attempted (max_retries={self.max_retries})")
        raise last_error

    async def poll_until_complete(
        self,
        task_id: str,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TaskDetail:
        """
        Poll get_task_status until the task completes.
        Not-found responses count as still generating. A failed task raises TaskFailedError at once;
        exhausting max_attempts raises PollTimeoutError.
        """
        for attempt in range(1, max_attempts + 1):
            try:
                detail = await self.get_task_status(task_id)
            except ProviderTaskNotFoundError:
                detail = TaskDetail(task_id=task_id, state=TASK_GENERATING, raw_state="not_found")
            if on_progress is not None:
                result = on_progress(attempt, detail)
                if asyncio.iscoroutine(result):
                    await result
            if detail.state == TASK_COMPLETED:
                return detail
            if detail.state == TASK_FAILED:
                raise TaskFailedError(detail.error_message or f"{self.name}: task {task_id} failed")
            if attempt < max_attempts:
                await asyncio.sleep(poll_interval)
        raise PollTimeoutError(
            f"{self.name}: task {task_id} did not finish after {max_attempts} polls",
            retryable=True,
        )
