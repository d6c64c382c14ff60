"""
Turn a model's free-form answer into a validated analysis record.

Models wrap JSON in prose and markdown fences, leave trailing commas, or
write ``12.`` instead of ``12``.  Repair stages run from least to most
invasive and stop at the first one whose output both parses as a JSON
object and validates against the analysis schema:

``direct``           the raw text as-is
``strip_and_bound``  fences removed, sliced from the first ``{`` to the last ``}``
``normalized``       trailing commas, dangling decimal points, doubled commas fixed
``regex_extraction`` largest balanced ``{...}`` block, then normalised

Nothing is ever invented: a field the model did not write stays missing.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import SchemaValidationError, UnparseableOutputError

logger = logging.getLogger(__name__)

STAGES = ("direct", "strip_and_bound", "normalized", "regex_extraction")

_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_DANGLING_DECIMAL_RE = re.compile(r"(\d)\.(\s*[,}\]])")
_DOUBLE_DOT_RE = re.compile(r"(\d)\.\.+(\d)")
_DOUBLE_COMMA_RE = re.compile(r",(\s*,)+")
_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)


def strip_and_bound(text: str) -> str:
    cleaned = _FENCE_RE.sub("", text).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        return cleaned
    return cleaned[start : end + 1]


def _outside_strings(text: str, fix) -> str:
    """Apply *fix* to every span of *text* that is not a JSON string literal."""
    parts = []
    pos = 0
    for match in _STRING_RE.finditer(text):
        parts.append(fix(text[pos : match.start()]))
        parts.append(match.group())
        pos = match.end()
    parts.append(fix(text[pos:]))
    return "".join(parts)


def _normalize_code(fragment: str) -> str:
    # Nested trailing commas need several passes
    for _ in range(5):
        updated = _TRAILING_COMMA_RE.sub(r"\1", fragment)
        if updated == fragment:
            break
        fragment = updated
    fragment = _DANGLING_DECIMAL_RE.sub(r"\1\2", fragment)
    fragment = _DOUBLE_DOT_RE.sub(r"\1.\2", fragment)
    return _DOUBLE_COMMA_RE.sub(",", fragment)


def normalize(text: str) -> str:
    return _outside_strings(strip_and_bound(text), _normalize_code)


def largest_brace_block(text: str) -> Optional[str]:
    """Return the longest balanced ``{...}`` span, ignoring braces inside strings."""
    best: Optional[str] = None
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = depth > 0
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                candidate = text[start : i + 1]
                if best is None or len(candidate) > len(best):
                    best = candidate
    return best


def _regex_extraction(text: str) -> str:
    block = largest_brace_block(_FENCE_RE.sub("", text))
    return normalize(block) if block else ""


_REPAIRS = {
    "direct": lambda t: t.strip(),
    "strip_and_bound": strip_and_bound,
    "normalized": normalize,
    "regex_extraction": _regex_extraction,
}


def _parse_object(candidate: str) -> Optional[dict[str, Any]]:
    if not candidate:
        return None
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def schema_problems(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic error into ``"path: message"`` strings."""
    problems = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        problems.append(f"{path}: {err.get('msg', 'invalid')}")
    return problems


def extract_with_stage(
    raw_text: str, schema: Optional[type[BaseModel]] = None
) -> tuple[dict[str, Any], str]:
    """Return ``(record, stage)`` for the first stage that parses and validates.

    Raises ``UnparseableOutputError`` when no stage yields a JSON object and
    ``SchemaValidationError`` (problems from the last parsed candidate) when
    something parsed but nothing validated.
    """
    raw_text = raw_text or ""
    last_problems: Optional[list[str]] = None
    last_stage = ""
    tried: set[str] = set()

    for stage in STAGES:
        candidate = _REPAIRS[stage](raw_text)
        if candidate in tried:
            continue
        tried.add(candidate)
        parsed = _parse_object(candidate)
        if parsed is None:
            continue
        if schema is None:
            _log_stage(stage)
            return parsed, stage
        try:
            record = schema.model_validate(parsed)
        except PydanticValidationError as exc:
            last_problems = schema_problems(exc)
            last_stage = stage
            continue
        _log_stage(stage)
        return record.model_dump(mode="json", exclude_unset=True), stage

    if last_problems is not None:
        logger.warning("Output parsed at stage %s but failed validation: %s", last_stage, last_problems)
        raise SchemaValidationError(last_problems, stage=last_stage)
    err = UnparseableOutputError(raw_text)
    logger.warning("Unparseable model output (%d chars), head=%r", err.raw_length, err.head)
    raise err


def extract(raw_text: str, schema: Optional[type[BaseModel]] = None) -> dict[str, Any]:
    record, _ = extract_with_stage(raw_text, schema)
    return record


def _log_stage(stage: str) -> None:
    if stage != "direct":
        logger.info("Model output recovered at repair stage %s", stage, extra={"stage": stage})
