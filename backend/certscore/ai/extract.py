"""Extraction of a JSON payload out of a free-form AI completion."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from certscore.errors import MalformedResponse

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*(?:```|$)", re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}
_PARTIAL_MEMBER_TAILS = ('"', ":", ",")


@dataclass
class Extraction:
    value: Any
    repaired: bool = False


@dataclass
class _ScanState:
    open_stack: list[str]
    opened_at: list[int]
    in_string: bool
    last_comma: int
    balanced_at: int
    string_start: int


def _scan(text: str) -> _ScanState:
    """Walk the text outside string literals, tracking unmatched openers."""
    stack: list[str] = []
    opened_at: list[int] = []
    in_string = False
    escape_next = False
    last_comma = -1
    balanced_at = -1
    string_start = -1

    for idx, char in enumerate(text):
        if in_string:
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
            string_start = idx
        elif char in _CLOSERS:
            stack.append(char)
            opened_at.append(idx)
        elif char in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == char:
                stack.pop()
                opened_at.pop()
                if not stack and balanced_at < 0:
                    balanced_at = idx
        elif char == ",":
            last_comma = idx

    return _ScanState(
        open_stack=stack,
        opened_at=opened_at,
        in_string=in_string,
        last_comma=last_comma,
        balanced_at=balanced_at,
        string_start=string_start,
    )


def _candidate(raw: str) -> str | None:
    fenced = _FENCED_JSON.search(raw)
    if fenced:
        return fenced.group(1).strip()

    start = raw.find("{")
    if start < 0:
        return None

    # A completion cut off mid-object has no prose after it: keep the whole tail.
    tail = raw[start:]
    if _scan(tail).balanced_at < 0:
        return tail.rstrip()

    end = raw.rfind("}")
    return raw[start : end + 1]


def _cut_inside_key(text: str, state: _ScanState) -> bool:
    if not state.in_string or (state.open_stack and state.open_stack[-1] == "["):
        return False
    return not text[: state.string_start].rstrip().endswith(":")


def _repair(candidate: str) -> str:
    text = candidate.rstrip()
    state = _scan(text)
    if _cut_inside_key(text, state):
        # A member whose key never closed is dropped entirely
        text = text[: state.string_start].rstrip()
        state = _scan(text)

    if text.endswith(_PARTIAL_MEMBER_TAILS):
        # Back to the last complete member, or to the innermost opener when there is none
        if state.last_comma >= 0:
            text = text[: state.last_comma].rstrip()
        elif state.opened_at:
            text = text[: state.opened_at[-1] + 1]
        state = _scan(text)

    if state.in_string:
        text += '"'
    closers = "".join(_CLOSERS[opener] for opener in reversed(state.open_stack))
    return text + closers


def _try_parse(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def extract_payload(raw: str) -> Extraction | MalformedResponse:
    """Return the parsed JSON value and whether a repair was needed."""
    if not isinstance(raw, str):
        return MalformedResponse(raw=repr(raw), reason="completion is not a string")

    ok, value = _try_parse(raw.strip())
    if ok:
        return Extraction(value=value)

    candidate = _candidate(raw)
    if candidate is None:
        return MalformedResponse(raw=raw, reason="no JSON object found in completion")

    ok, value = _try_parse(candidate)
    if ok:
        return Extraction(value=value)

    repaired = _repair(candidate)
    ok, value = _try_parse(repaired)
    if not ok:
        logger.warning(
            "ai/extract repair failed",
            extra={"stage": "extract_repair", "candidate_length": len(candidate)},
        )
        return MalformedResponse(raw=raw, reason="JSON still invalid after one repair attempt")

    logger.info(
        "ai/extract repaired truncated json",
        extra={"stage": "extract_repair", "appended": len(repaired) - len(candidate)},
    )
    return Extraction(value=value, repaired=True)


def extract_json(raw: str) -> Any | MalformedResponse:
    """Turn an AI completion into a parsed JSON value, or an explicit failure."""
    outcome = extract_payload(raw)
    if isinstance(outcome, MalformedResponse):
        return outcome
    return outcome.value
