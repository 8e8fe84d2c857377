"""Provider prompt for a video: style, topic, script and voice-over pacing limits."""
import math
from typing import Optional

MAX_PROMPT_LENGTH = 1000
TRUNCATION_MARKER = "..."

WORDS_PER_SECOND = 2.2
CHARS_PER_SECOND = 14
MIN_WORDS = 10
MIN_CHARACTERS = 60
MAX_VOICEOVER_SECONDS = 15


def max_words_for_duration(duration_seconds: float) -> int:
    """Spoken words that fit the duration; 0 for non-positive durations."""
    if not duration_seconds or duration_seconds <= 0:
        return 0
    return max(MIN_WORDS, math.floor(duration_seconds * WORDS_PER_SECOND))


def max_characters_for_duration(duration_seconds: float) -> int:
    if not duration_seconds or duration_seconds <= 0:
        return 0
    return max(MIN_CHARACTERS, math.floor(duration_seconds * CHARS_PER_SECOND))


def truncate_prompt(prompt: str, limit: int = MAX_PROMPT_LENGTH) -> str:
    """Cap at limit characters; a cut prompt always ends with the truncation marker."""
    if len(prompt) <= limit:
        return prompt
    return prompt[: limit - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER


def build_video_prompt(style: str, topic: str, script: Optional[str], duration: int) -> str:
    """Pacing limits follow the voice-over window (capped at 15 seconds), not the clip length."""
    voiceover_seconds = min(duration, MAX_VOICEOVER_SECONDS) if duration > 0 else MAX_VOICEOVER_SECONDS
    max_words = max_words_for_duration(voiceover_seconds)
    max_chars = max_characters_for_duration(voiceover_seconds)
    parts = [f"Style: {style}.", f"Topic: {topic}."]
    if script and script.strip():
        parts.append(f"Script: {script.strip()}.")
    parts.append(f"VoiceOver must be no more than {MAX_VOICEOVER_SECONDS} seconds.")
    parts.append(f"Keep the voiceover under {max_words} words and {max_chars} characters.")
    parts.append("Match the video pacing to the voiceover timing and avoid fast cuts.")
    return truncate_prompt(" ".join(parts))
