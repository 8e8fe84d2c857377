"""
upload-post.com client: posts a finished video URL to one or more platforms.
POST /upload (form fields, Authorization: Apikey <key>), GET /uploadposts/status?request_id=.
Results come back either as a list or as {platform: {...}}; both are normalized to PlatformResult.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx

from autopilot.errors import UploadPostError, UploadPostRateLimitError
from autopilot.logging_config import get_logger

logger = get_logger(__name__)

UPLOAD_PATH = "/upload"
STATUS_PATH = "/uploadposts/status"
MAX_TITLE_LENGTH = 100
MAX_RETRIES = 3
HTTP_TIMEOUT = 120.0

RESULT_SUCCESS = "success"
RESULT_FAILED = "failed"
RESULT_PENDING = "pending"

_SUCCESS_STATES = {"success", "completed", "posted", "published"}
_FAILED_STATES = {"failed", "fail", "error"}


@dataclass(frozen=True)
class PlatformResult:
    platform: str
    status: str
    post_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UploadResponse:
    """status: success | pending | scheduled | failed (overall)."""

    upload_id: Optional[str]
    status: str
    results: List[PlatformResult] = field(default_factory=list)
    error: Optional[str] = None

    def result_for(self, platform: str) -> Optional[PlatformResult]:
        for result in self.results:
            if result.platform == platform:
                return result
        return None


def _result_status(raw: Dict[str, Any]) -> str:
    state = str(raw.get("status") or "").lower()
    if raw.get("success") is True or state in _SUCCESS_STATES:
        return RESULT_SUCCESS
    if raw.get("error") or raw.get("success") is False or state in _FAILED_STATES:
        return RESULT_FAILED
    return RESULT_PENDING


def _post_id(raw: Dict[str, Any]) -> Optional[str]:
    for key in ("post_id", "url", "container_id", "video_id"):
        value = raw.get(key)
        if value:
            return str(value)
    return None


def normalize_results(raw_results: Any) -> List[PlatformResult]:
    """Accept [{platform, status, ...}] or {platform: {success, url, error}}."""
    if isinstance(raw_results, dict):
        pairs = [(platform, value) for platform, value in raw_results.items() if isinstance(value, dict)]
    elif isinstance(raw_results, list):
        pairs = [(str(value.get("platform") or ""), value) for value in raw_results if isinstance(value, dict)]
    else:
        return []
    return [
        PlatformResult(
            platform=platform,
            status=_result_status(value),
            post_id=_post_id(value),
            error=str(value["error"]) if value.get("error") else None,
        )
        for platform, value in pairs
    ]


def parse_upload_response(status_code: int, data: Dict[str, Any]) -> UploadResponse:
    upload_id = data.get("request_id") or data.get("upload_id") or data.get("job_id")
    if status_code == 202:
        return UploadResponse(upload_id=upload_id, status="scheduled")
    results = normalize_results(data.get("results"))
    if results and all(r.status == RESULT_SUCCESS for r in results):
        overall = RESULT_SUCCESS
    elif results and all(r.status == RESULT_FAILED for r in results):
        overall = RESULT_FAILED
    elif data.get("success") is True and not results:
        overall = RESULT_SUCCESS
    else:
        overall = RESULT_PENDING
    return UploadResponse(upload_id=upload_id, status=overall, results=results, error=data.get("error"))


def build_title(caption: Optional[str], fallback: str) -> str:
    title = (caption or "").strip().split("\n", 1)[0] or fallback
    return title[:MAX_TITLE_LENGTH]


class UploadPostClient:
    """Constructed once from settings; transport is injectable for tests."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        max_retries: int = MAX_RETRIES,
        retry_delay_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Apikey {api_key}"},
            timeout=HTTP_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        delay = self.retry_delay_seconds
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                if attempt >= self.max_retries:
                    raise UploadPostError(f"Upload-Post API network error: {e}") from e
                logger.warning("uploadpost.network_retry", path=path, attempt=attempt, error=str(e))
                await asyncio.sleep(delay)
                delay *= 2
                continue
            if resp.status_code < 400:
                return resp
            retryable = resp.status_code == 429 or resp.status_code >= 500
            if not retryable or attempt >= self.max_retries:
                message = _error_message(resp)
                if resp.status_code == 429:
                    raise UploadPostRateLimitError(message, status_code=429)
                raise UploadPostError(message, status_code=resp.status_code)
            wait = delay
            retry_after = resp.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                wait = float(retry_after)
            logger.warning("uploadpost.retry", path=path, attempt=attempt, status=resp.status_code, wait_seconds=wait)
            await asyncio.sleep(wait)
            delay *= 2
        raise UploadPostError("Upload-Post API request failed: no response received")

    async def post_video(
        self,
        account_handle: str,
        video_url: str,
        platforms: Sequence[str],
        caption: Optional[str] = None,
        title: Optional[str] = None,
        scheduled_time: Optional[datetime] = None,
        async_upload: bool = True,
    ) -> UploadResponse:
        """Upload video_url to platforms for the given upload-post user profile."""
        form: Dict[str, Any] = {
            "user": account_handle,
            "video": video_url,
            "title": build_title(title or caption, "New video"),
            "platform[]": list(platforms),
            "async_upload": "true" if async_upload else "false",
        }
        if "instagram" in platforms:
            form["media_type"] = "REELS"
            form["share_to_feed"] = "true"
        if caption:
            form["description"] = caption
        if scheduled_time is not None:
            form["scheduled_date"] = scheduled_time.isoformat()
        resp = await self._send("POST", UPLOAD_PATH, data=form)
        try:
            data = resp.json()
        except ValueError as e:
            raise UploadPostError("Upload-Post API returned invalid JSON") from e
        out = parse_upload_response(resp.status_code, data if isinstance(data, dict) else {})
        logger.info(
            "uploadpost.posted",
            upload_id=out.upload_id,
            status=out.status,
            platforms=list(platforms),
        )
        return out

    async def get_upload_status(self, upload_id: str) -> UploadResponse:
        resp = await self._send("GET", STATUS_PATH, params={"request_id": upload_id})
        try:
            data = resp.json()
        except ValueError as e:
            raise UploadPostError("Upload-Post API returned invalid JSON") from e
        out = parse_upload_response(resp.status_code, data if isinstance(data, dict) else {})
        if not out.upload_id:
            out.upload_id = upload_id
        return out


def _error_message(resp: httpx.Response) -> str:
    if resp.status_code == 401:
        return "Upload-Post API: invalid API key"
    if resp.status_code == 403:
        return "Upload-Post API: access forbidden for this profile"
    if resp.status_code == 404:
        return "Upload-Post API: endpoint or profile not found"
    if resp.status_code == 429:
        return "Upload-Post API: rate limit exceeded"
    if resp.status_code >= 500:
        return f"Upload-Post API: server error ({resp.status_code})"
    return f"Upload-Post API: request failed ({resp.status_code}) {resp.text[:200]}".rstrip()
