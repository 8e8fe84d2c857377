"""
Result URL extraction from a completed task payload.
Providers disagree on where the playable URL lives, so EXTRACTORS is tried in order and the first
non-empty string wins. Each extractor reads exactly one location.
"""
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from autopilot.providers.kie import parse_result_json

Extractor = Callable[[Dict[str, Any]], Optional[str]]


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _dig(payload: Dict[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def field_at(*path: str) -> Extractor:
    """Extractor for a string at a nested dict path."""

    def extract(payload: Dict[str, Any]) -> Optional[str]:
        return _clean(_dig(payload, path))

    extract.__name__ = "field_at_" + "_".join(path)
    return extract


def first_of_list_at(*path: str) -> Extractor:
    """Extractor for the first element of a list at a nested dict path."""

    def extract(payload: Dict[str, Any]) -> Optional[str]:
        value = _dig(payload, path)
        if isinstance(value, list) and value:
            return _clean(value[0])
        return None

    extract.__name__ = "first_of_list_at_" + "_".join(path)
    return extract


def kie_result_json_url(payload: Dict[str, Any]) -> Optional[str]:
    """KIE: data.resultJson is a JSON string {"resultUrls": [...]}."""
    result = parse_result_json(payload.get("resultJson"))
    urls = result.get("resultUrls")
    if isinstance(urls, list) and urls:
        return _clean(urls[0])
    return None


EXTRACTORS: Sequence[Extractor] = (
    kie_result_json_url,
    field_at("video_url"),
    field_at("output", "video_url"),
    field_at("result", "video_url"),
    field_at("output", "url"),
    field_at("result", "url"),
    field_at("result_url"),
    field_at("url"),
    first_of_list_at("video_urls"),
    first_of_list_at("output", "urls"),
    first_of_list_at("result", "urls"),
)


def extract_result_url(payload: Optional[Dict[str, Any]], extractors: Sequence[Extractor] = EXTRACTORS) -> Optional[str]:
    """First URL found by the ordered extractors, or None."""
    if not isinstance(payload, dict):
        return None
    for extractor in extractors:
        url = extractor(payload)
        if url:
            return url
    return None
