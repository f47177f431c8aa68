"""Recover a structured issue list from free-form model output.

Local models are unreliable JSON emitters: they wrap the object in prose or
markdown, leave raw newlines inside strings, drop commas, add trailing
commas and get cut off mid-object when they hit the token limit. Parsing is
therefore a chain of independent recovery strategies tried in order:

    region extraction → normalisation
        → StrictRepairStrategy    json.loads + targeted repairs at the error position
        → FragmentStrategy        regex-split the "issues" array, parse each object
        → ScannerStrategy         brace/string-aware walk, parse objects as they close
        → fallback                one synthetic "Analysis Parse Error" issue

Each strategy returns a payload or ``None`` ("try the next one"). The first
payload that carries an ``issues`` list wins. ``ResponseParser.parse`` never
raises.
"""

from __future__ import annotations

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from filelens_core.models import CATEGORIES, SEVERITIES, Issue

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Analysis Parse Error"

_MAX_REPAIR_ATTEMPTS = 10

_FENCE = "```"
_FENCE_LANG_RE = re.compile(r"^[A-Za-z0-9_+#.-]*[ \t]*\n")
_ISSUES_START_RE = re.compile(r'"issues"\s*:\s*\[')
# One object, allowing a single level of nested braces.
_OBJECT_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")


def fallback_issue() -> Issue:
    return Issue(
        line=1,
        severity="info",
        category="best-practice",
        title=FALLBACK_TITLE,
        description="The model returned a response that could not be parsed into issues.",
        suggestion="Try analyzing again or check the model server configuration.",
        reasoning="JSON parsing failed",
    )


@dataclass
class ParseOutcome:
    issues: list[Issue]
    strategy: str  # name of the strategy that produced the payload, or "fallback"

    @property
    def degraded(self) -> bool:
        return self.strategy == "fallback"


# ---------------------------------------------------------------------- #
# Region extraction and normalisation                                     #
# ---------------------------------------------------------------------- #


def extract_json_region(raw: str) -> str | None:
    """Return the text from the first ``{`` to the last ``}``, or None."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return raw[start : end + 1]


def normalize(text: str) -> str:
    """Strip markdown code markers and raw line breaks that corrupt JSON strings.

    A fenced block standing where a value belongs becomes ``""``; a fence
    inside a string value loses its markers (and language tag) but keeps the
    code. Inline backticks are dropped. Raw newlines become spaces, carriage
    returns are removed; a backslash followed by a raw newline becomes ``\\n``.
    """
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    n = len(text)
    while i < n:
        if not escaped and text.startswith(_FENCE, i):
            close = text.find(_FENCE, i + len(_FENCE))
            if close == -1:
                i += len(_FENCE)
                continue
            block = text[i + len(_FENCE) : close]
            if in_string:
                body = _FENCE_LANG_RE.sub("", block, count=1)
                out.append(body.replace("\r", "").replace("\n", " "))
            else:
                out.append('""')
            i = close + len(_FENCE)
            continue

        ch = text[i]
        i += 1
        if escaped:
            escaped = False
            if ch == "\n":
                out.append("n")
            elif ch == "\r":
                out.append("r")
            else:
                out.append(ch)
            continue
        if ch == "\\" and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
        elif ch == "`":
            continue
        elif ch == "\r":
            continue
        elif ch == "\n":
            ch = " "
        out.append(ch)
    return "".join(out)


# ---------------------------------------------------------------------- #
# Strategies                                                              #
# ---------------------------------------------------------------------- #


class _ParseState:
    """Mutable text shared along the chain so later strategies see earlier repairs."""

    def __init__(self, text: str):
        self.text = text


class ParseStrategy(ABC):
    name: str = "base"

    @abstractmethod
    def attempt(self, state: _ParseState) -> object | None:
        """Return a decoded payload, or None to hand over to the next strategy."""


class StrictRepairStrategy(ParseStrategy):
    """``json.loads`` with position-keyed repairs, up to a fixed attempt ceiling."""

    name = "strict"

    def __init__(self, max_attempts: int = _MAX_REPAIR_ATTEMPTS):
        self.max_attempts = max_attempts

    def attempt(self, state: _ParseState) -> object | None:
        text = state.text
        for attempt in range(self.max_attempts):
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as e:
                repaired = self._repair(text, e)
                if repaired is None or repaired == text:
                    logger.debug("No repair applies for %r at position %d", e.msg, e.pos)
                    break
                logger.debug("Repaired %r at position %d (attempt %d)", e.msg, e.pos, attempt + 1)
                text = repaired
                continue
            state.text = text
            return payload
        state.text = text
        return None

    @staticmethod
    def _repair(text: str, error: json.JSONDecodeError) -> str | None:
        msg, pos = error.msg, error.pos

        if msg.startswith("Expecting ',' delimiter"):
            if 0 < pos < len(text) - 1:
                head, tail = text[:pos].rstrip(), text[pos:].lstrip()
                if not head.endswith(","):
                    return f"{head},{tail}"
            return None

        if msg.startswith("Invalid control character"):
            if pos < len(text):
                return text[:pos] + " " + text[pos + 1 :]
            return None

        if msg.startswith("Illegal trailing comma"):
            if pos < len(text) and text[pos] == ",":
                return text[:pos] + text[pos + 1 :]
            return None

        if msg.startswith(("Expecting value", "Expecting property name")):
            head = text[:pos].rstrip()
            if head.endswith(",") and text[pos:].lstrip()[:1] in ("]", "}"):
                return head[:-1] + text[pos:]
            return None

        if msg.startswith("Extra data"):
            return text[:pos]

        return None


def _loads_lenient(fragment: str) -> object | None:
    try:
        return json.loads(fragment.strip(), strict=False)
    except json.JSONDecodeError:
        return None


def _issues_array_body(text: str) -> str | None:
    """Inner text of the ``issues`` array, or None if the array never closes.

    Brackets inside string values do not end the array.
    """
    match = _ISSUES_START_RE.search(text)
    if not match:
        return None
    start = match.end()
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
        elif ch == "\\" and in_string:
            escaped = True
        elif ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == "[":
                depth += 1
            elif ch == "]":
                if depth == 0:
                    return text[start:i]
                depth -= 1
    return None


class FragmentStrategy(ParseStrategy):
    """Split the inner text of the ``issues`` array into brace-balanced objects."""

    name = "fragments"

    def attempt(self, state: _ParseState) -> object | None:
        body = _issues_array_body(state.text)
        if body is None:
            return None
        issues = [p for p in (_loads_lenient(f) for f in _OBJECT_RE.findall(body)) if p is not None]
        if not issues:
            return None
        logger.info("Extracted %d issue object(s) from malformed JSON", len(issues))
        return {"issues": issues}


class ScannerStrategy(ParseStrategy):
    """Walk the ``issues`` array character by character, tracking strings and nesting.

    Survives truncated output: every object that closed before the cut-off
    is kept.
    """

    name = "scanner"

    def attempt(self, state: _ParseState) -> object | None:
        text = state.text
        match = _ISSUES_START_RE.search(text)
        if not match:
            return None

        issues: list = []
        current: list[str] = []
        depth = 0
        in_string = False
        escaped = False

        for ch in text[match.end() :]:
            if depth == 0:
                if ch == "]":
                    break
                if ch != "{":
                    continue
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\" and in_string:
                escaped = True
            elif ch == '"':
                in_string = not in_string
            elif not in_string:
                if ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        payload = _loads_lenient("".join(current))
                        if payload is not None:
                            issues.append(payload)
                        current = []

        if not issues:
            return None
        logger.info("Scanned %d issue object(s) out of corrupted JSON", len(issues))
        return {"issues": issues}


DEFAULT_STRATEGIES: tuple[ParseStrategy, ...] = (StrictRepairStrategy(), FragmentStrategy(), ScannerStrategy())


# ---------------------------------------------------------------------- #
# Validation                                                              #
# ---------------------------------------------------------------------- #


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def to_issue(entry) -> Issue | None:
    """Convert one decoded entry to an Issue, or None if it is not a usable issue.

    An entry needs a numeric ``line`` and non-empty string ``severity`` and
    ``title``. Severity and category are folded into the closed vocabularies
    (unknown values become ``info`` / ``best-practice``).
    """
    if not isinstance(entry, dict):
        return None
    line = entry.get("line")
    severity = entry.get("severity")
    title = entry.get("title")
    if isinstance(line, bool) or not isinstance(line, (int, float)):
        return None
    if isinstance(line, float) and not math.isfinite(line):
        return None
    if not isinstance(severity, str) or not severity.strip():
        return None
    if not isinstance(title, str) or not title.strip():
        return None

    severity = severity.strip().lower()
    if severity not in SEVERITIES:
        severity = "info"
    category = _text(entry.get("category")).lower()
    if category not in CATEGORIES:
        category = "best-practice"
    fixed_code = entry.get("fixedCode", entry.get("fixed_code"))

    return Issue(
        line=int(line),
        severity=severity,
        category=category,
        title=title.strip(),
        description=_text(entry.get("description")),
        suggestion=_text(entry.get("suggestion")),
        reasoning=_text(entry.get("reasoning")),
        fixed_code=fixed_code if isinstance(fixed_code, str) and fixed_code.strip() else None,
    )


class ResponseParser:
    def __init__(self, strategies: tuple[ParseStrategy, ...] = DEFAULT_STRATEGIES):
        self.strategies = strategies

    def parse(self, raw: str) -> list[Issue]:
        return self.parse_response(raw).issues

    def parse_response(self, raw: str) -> ParseOutcome:
        try:
            return self._parse(raw)
        except Exception as e:
            logger.warning("Unexpected error while parsing model response (%s): %s", type(e).__name__, e)
            return ParseOutcome([fallback_issue()], "fallback")

    def _parse(self, raw: str) -> ParseOutcome:
        logger.debug("Parsing model response (%d chars)", len(raw or ""))
        region = extract_json_region(raw or "")
        if region is None:
            logger.warning("No JSON object found in model response: %s", (raw or "")[:200])
            return ParseOutcome([fallback_issue()], "fallback")

        state = _ParseState(normalize(region))
        for strategy in self.strategies:
            payload = strategy.attempt(state)
            if isinstance(payload, dict) and isinstance(payload.get("issues"), list):
                issues = [i for i in (to_issue(e) for e in payload["issues"]) if i is not None]
                dropped = len(payload["issues"]) - len(issues)
                if dropped:
                    logger.debug("Discarded %d invalid issue entr(ies)", dropped)
                return ParseOutcome(issues, strategy.name)

        logger.warning("Model response could not be parsed; returning fallback issue: %s", region[:200])
        return ParseOutcome([fallback_issue()], "fallback")


def parse_issues(raw: str) -> list[Issue]:
    """Module-level convenience for the default strategy chain."""
    return ResponseParser().parse(raw)
