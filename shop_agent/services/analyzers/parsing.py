"""Tolerant parsing of model replies into ``ParsedAnalysis``.

Models wrap JSON in Markdown fences, add prose after it, and drift on key
casing (``priorityScore``, ``Priority Score``). All of that is accepted; only a
reply with no JSON object at all is a ``ParseError``.
"""

import json
import re
from typing import Any, Dict, List, Optional

from shop_agent.core.exceptions import ParseError
from shop_agent.domain.analysis import NEUTRAL_PRIORITY, ParsedAnalysis, Suggestion, clamp_score

FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")
CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

ANALYSIS_KEYS = ("analysis", "summary", "analysis_summary")
SUGGESTION_KEYS = ("suggestions", "actions", "recommendations", "suggested_actions")
SCORE_KEYS = ("priority_score", "priority", "score")
TYPE_KEYS = ("type", "action_type", "action")
REASON_KEYS = ("reasoning", "reason", "rationale", "explanation")


def normalize_key(key: Any) -> str:
    text = CAMEL_RE.sub(r"_\1", str(key).strip())
    return re.sub(r"[\s\-]+", "_", text).lower()


def normalize_keys(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {normalize_key(k): v for k, v in obj.items()}


def _first(obj: Dict[str, Any], keys, default: Any = None) -> Any:
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return default


def _decode_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        decoded = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        decoded = None
    if isinstance(decoded, dict):
        return decoded

    start = text.find("{")
    if start == -1:
        return None
    # raw_decode stops at the end of the first complete object, ignoring trailing prose
    try:
        decoded, _ = json.JSONDecoder().raw_decode(text[start:])
        if isinstance(decoded, dict):
            return decoded
    except (json.JSONDecodeError, ValueError):
        pass

    match = OBJECT_RE.search(text)
    if match:
        try:
            decoded = json.loads(match.group(0))
        except (json.JSONDecodeError, ValueError):
            return None
        if isinstance(decoded, dict):
            return decoded
    return None


def extract_json(content: str) -> Optional[Dict[str, Any]]:
    """Find the JSON object in a model reply, or None."""
    if not content or not content.strip():
        return None
    text = content.strip()

    for block in FENCE_RE.findall(text):
        decoded = _decode_object(block.strip())
        if decoded is not None:
            return decoded

    return _decode_object(text)


def _normalize_type(value: Any) -> str:
    return normalize_key(value) if value is not None else ""


def parse_suggestions(raw: Any) -> List[Suggestion]:
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        return []

    suggestions = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        item = normalize_keys(item)
        action_type = _normalize_type(_first(item, TYPE_KEYS))
        if not action_type:
            continue
        data = item.get("data")
        if not isinstance(data, dict):
            data = {}
        reasoning = _first(item, REASON_KEYS)
        suggestions.append(Suggestion(
            type=action_type,
            priority=clamp_score(item.get("priority"), NEUTRAL_PRIORITY),
            data=data,
            reasoning=str(reasoning) if reasoning is not None else None,
        ))
    return suggestions


def parse_analysis_response(content: str) -> ParsedAnalysis:
    payload = extract_json(content)
    if payload is None:
        raise ParseError("Model reply did not contain a JSON object", raw_content=content)

    payload = normalize_keys(payload)
    analysis = _first(payload, ANALYSIS_KEYS, "")
    if not isinstance(analysis, str):
        analysis = json.dumps(analysis, ensure_ascii=False)

    known = set(ANALYSIS_KEYS) | set(SUGGESTION_KEYS) | set(SCORE_KEYS)
    return ParsedAnalysis(
        analysis=analysis,
        suggestions=parse_suggestions(_first(payload, SUGGESTION_KEYS, [])),
        priority_score=clamp_score(_first(payload, SCORE_KEYS), NEUTRAL_PRIORITY),
        extra={k: v for k, v in payload.items() if k not in known},
    )
