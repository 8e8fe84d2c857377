"""
OpenAI text generation: topic research and short video scripts.
All chat completion calls live in this module; research output is JSON and validated here.
"""
import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional, Tuple

from autopilot.config import Settings
from autopilot.errors import ConfigurationError, ResearchError, ScriptGenerationError
from autopilot.logging_config import get_logger
from autopilot.services.script_prompts import build_user_prompt, system_prompt_for

logger = get_logger(__name__)

UsageInfo = Dict[str, int]  # prompt_tokens, completion_tokens, total_tokens

RESEARCH_KEYS = ("idea", "description", "why_it_matters", "useful_tips", "category")

RESEARCH_SYSTEM_PROMPT = (
    "You research ideas for 15-second educational social videos. "
    "Return ONLY valid JSON, no markdown or explanation. "
    'Strict format: {"idea": "...", "description": "...", "why_it_matters": "...", '
    '"useful_tips": "...", "category": "..."}. '
    "idea is a short hook-worthy title; description is 2-3 factual sentences; why_it_matters is one sentence; "
    "useful_tips is 2-3 concrete tips in one string. Keep it neutral and educational: no guarantees, "
    "no brand names, no politics, religion, health claims or other sensitive topics."
)


def _strip_code_fence(content: str) -> str:
    """Model sometimes wraps JSON in ```json fences."""
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        content = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return content.strip()


class LLMService:
    """OpenAI client wrapper for research and script generation."""

    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.timeout_seconds = settings.openai_timeout_seconds
        self.max_retries = settings.openai_max_retries
        self.temperature = settings.openai_temperature
        self.script_max_tokens = settings.openai_script_max_tokens
        self._client: Any = None

    def _get_client(self):  # noqa: ANN201
        """Lazy init OpenAI client; raises ConfigurationError without OPENAI_API_KEY."""
        if not self.api_key:
            raise ConfigurationError("Missing OPENAI_API_KEY environment variable")
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(
                api_key=self.api_key,
                timeout=float(self.timeout_seconds),
                max_retries=self.max_retries,
            )
        return self._client

    def _extract_usage(self, resp: Any) -> UsageInfo:
        usage = getattr(resp, "usage", None)
        if not usage:
            return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }

    async def _complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> Tuple[str, UsageInfo]:
        client = self._get_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, {"role": "user", "content": user}],
            "temperature": self.temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        resp = await asyncio.to_thread(client.chat.completions.create, **kwargs)
        content = (resp.choices[0].message.content or "").strip()
        return content, self._extract_usage(resp)

    async def generate_script(self, fields: Mapping[str, Any]) -> Tuple[str, UsageInfo]:
        """
        Generate a ~40-50 word spoken script.
        fields: idea, description, why_it_matters, useful_tips, category, persona (all optional).
        Returns (script, usage_info). Failures are wrapped in ScriptGenerationError, not retried here.
        """
        system = system_prompt_for(fields.get("category"))
        user = build_user_prompt(fields)
        start = time.perf_counter()
        try:
            script, usage = await self._complete(system, user, max_tokens=self.script_max_tokens)
        except ConfigurationError:
            raise
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning("llm.script_failed", model=self.model, latency_ms=round(latency_ms), error=str(e))
            raise ScriptGenerationError(f"Failed to generate script: {e}") from e
        latency_ms = (time.perf_counter() - start) * 1000
        if not script:
            logger.warning("llm.script_empty", model=self.model, latency_ms=round(latency_ms))
            raise ScriptGenerationError("Failed to generate script: empty response")
        logger.info(
            "llm.script_success",
            model=self.model,
            latency_ms=round(latency_ms),
            category=fields.get("category"),
            total_tokens=usage["total_tokens"],
        )
        return script, usage

    async def generate_research(self, topic: Optional[str], category: Optional[str]) -> Tuple[Dict[str, str], UsageInfo]:
        """
        Research a topic (or propose one when topic is empty).
        Returns ({idea, description, why_it_matters, useful_tips, category}, usage_info).
        """
        parts = []
        if topic and topic.strip():
            parts.append(f"Topic: {topic.strip()}.")
        else:
            parts.append("No topic given: propose a fresh, specific topic.")
        if category and category.strip():
            parts.append(f"Category: {category.strip()}.")
        parts.append("Return ONLY the JSON object.")
        user = " ".join(parts)

        start = time.perf_counter()
        try:
            content, usage = await self._complete(RESEARCH_SYSTEM_PROMPT, user)
            data = json.loads(_strip_code_fence(content))
        except ConfigurationError:
            raise
        except json.JSONDecodeError as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning("llm.research_json_failed", model=self.model, latency_ms=round(latency_ms), error=str(e))
            raise ResearchError("Research returned invalid JSON") from e
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning("llm.research_failed", model=self.model, latency_ms=round(latency_ms), error=str(e))
            raise ResearchError(f"Failed to research topic: {e}") from e

        if not isinstance(data, dict):
            raise ResearchError("Research returned invalid JSON")
        out = {key: str(data.get(key) or "").strip() for key in RESEARCH_KEYS}
        if not out["idea"]:
            out["idea"] = (topic or "").strip()
        if not out["idea"]:
            raise ResearchError("Research returned no idea")
        if not out["category"] and category:
            out["category"] = category
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info("llm.research_success", model=self.model, latency_ms=round(latency_ms), idea=out["idea"][:80])
        return out, usage
