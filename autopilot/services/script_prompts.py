"""
Category-specific system prompts and the user-content block for short spoken scripts.
Moderation rules live in the prompt only; the generated text is not post-validated.
"""
from typing import Dict, List, Mapping, Optional

CALL_TO_ACTION = "Follow for daily tips, and for deeper insights, use the link in our profile."

_BASE_TEMPLATE = """You are a scriptwriter for short {kind} videos (15 seconds, about {words} words). Write an engaging, specific script with personality.

TIMING (15 seconds total):
- Hook 0-3s: a surprising question, fact or bold statement
- Main 3-12s: one or two concrete tips or examples, nothing more
- Ending 12-15s: the call-to-action

STYLE:
- At most {words} words, simple punchy sentences, conversational tone
- No filler such as "in today's world" or "it's important to"
- No corporate language, no long background explanations
- Write it as a spoken script with timing cues like [0:00-0:03]

Example hook: "{hook}"

RULES (always apply):
{rules}
- End with exactly: "{cta}"
"""

_COMMON_RULES = [
    "Keep a neutral tone without hype or exaggerated claims.",
    "Do not name specific companies, brands or platforms; describe them generally.",
    "Exclude sensitive topics: politics, religion, health claims, adult or violent content, illegal activity.",
]

_CATEGORY_STYLES: Dict[str, Dict[str, object]] = {
    "Trading": {
        "kind": "educational trading",
        "words": "45-50",
        "hook": "Did you know most new traders quit in their first year?",
        "rules": [
            "Never promise returns: no 'guaranteed', 'risk-free' or 'instant profits'.",
            "Educational framing only, no direct investment advice.",
            "Do not target vulnerable groups such as people with past losses.",
        ],
    },
    "Lifestyle": {
        "kind": "lifestyle",
        "words": "40-45",
        "hook": "Want more energy before your first coffee?",
        "rules": [
            "Keep it inspirational or practical, never medical or financial advice.",
        ],
    },
    "Fin. Freedom": {
        "kind": "financial freedom",
        "words": "45-50",
        "hook": "What if one spending rule changed your whole month?",
        "rules": [
            "Never promise income, profits or guaranteed earnings.",
            "Avoid phrases like 'quit your job' or 'replace your salary'.",
            "Present ideas as perspectives, not financial advice.",
        ],
    },
}

_DEFAULT_STYLE: Dict[str, object] = {
    "kind": "educational",
    "words": "45-50",
    "hook": "Here is something most people get wrong.",
    "rules": [],
}


def system_prompt_for(category: Optional[str]) -> str:
    """System prompt for the category; unknown or empty categories use the default prompt."""
    style = _CATEGORY_STYLES.get((category or "").strip(), _DEFAULT_STYLE)
    rules: List[str] = list(style["rules"]) + _COMMON_RULES  # type: ignore[arg-type]
    return _BASE_TEMPLATE.format(
        kind=style["kind"],
        words=style["words"],
        hook=style["hook"],
        rules="\n".join(f"- {r}" for r in rules),
        cta=CALL_TO_ACTION,
    )


# (input key, label) in the order they appear in the user block.
_USER_FIELDS = (
    ("idea", "Topic/Idea"),
    ("description", "Description"),
    ("why_it_matters", "Why It Matters"),
    ("useful_tips", "Useful Tips"),
    ("category", "Category"),
)


def _present(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return any(_present(v) for v in value)
    return True


def _render(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v).strip() for v in value if _present(v))
    return str(value).strip()


def build_user_prompt(fields: Mapping[str, object]) -> str:
    """
    User block with every non-empty field. Missing or blank fields are left out entirely,
    there is no placeholder text for them.
    """
    lines = [f"{label}: {_render(fields.get(key))}" for key, label in _USER_FIELDS if _present(fields.get(key))]
    persona = fields.get("persona")
    if _present(persona):
        lines.append(f"Speaker persona: {_render(persona)}")
    lines.append("Write the script now.")
    return "\n".join(lines)
