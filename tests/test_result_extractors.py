"""Ordered result URL extraction."""
import json

from autopilot.providers.result_extractors import EXTRACTORS, extract_result_url, field_at


def test_kie_result_json_wins() -> None:
    payload = {
        "resultJson": json.dumps({"resultUrls": ["https://kie/a.mp4"]}),
        "video_url": "https://other/b.mp4",
    }
    assert extract_result_url(payload) == "https://kie/a.mp4"


def test_flat_fields_before_nested_and_lists() -> None:
    payload = {
        "output": {"video_url": "https://nested/c.mp4", "urls": ["https://list/d.mp4"]},
        "video_url": "https://flat/e.mp4",
    }
    assert extract_result_url(payload) == "https://flat/e.mp4"
    del payload["video_url"]
    assert extract_result_url(payload) == "https://nested/c.mp4"
    del payload["output"]["video_url"]
    assert extract_result_url(payload) == "https://list/d.mp4"


def test_blank_values_are_skipped() -> None:
    payload = {"resultJson": "not json", "video_url": "  ", "result_url": "https://r/f.mp4"}
    assert extract_result_url(payload) == "https://r/f.mp4"


def test_no_url() -> None:
    assert extract_result_url({"resultJson": json.dumps({"resultUrls": []})}) is None
    assert extract_result_url(None) is None
    assert extract_result_url({"video_urls": []}) is None


def test_custom_extractor_order() -> None:
    payload = {"url": "https://u/1.mp4", "result_url": "https://u/2.mp4"}
    assert extract_result_url(payload, [field_at("url"), field_at("result_url")]) == "https://u/1.mp4"
    assert len(EXTRACTORS) == 11
