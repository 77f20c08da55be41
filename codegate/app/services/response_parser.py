"""Turns the assistant's free-form text into an ExecutionResult.

The text is read line by line (``\\n`` separated, trailing ``\\r`` dropped)
with these delimiter rules:

* A line whose stripped form starts with three backticks opens a fenced
  region; whatever follows the backticks on that line is the language hint.
* Inside a region, a line whose stripped form is exactly three backticks
  closes it. A region left open runs to the end of the text.
* Region content is the lines between the delimiters, joined and stripped.
* Lines outside regions are prose. A prose line is a list item when its
  stripped form starts with ``- ``, ``* `` or ``<digits>. ``.
* A prose line starting with ``Language:`` or ``Framework:`` is an echo of
  the prompt header (metadata) and is left out of explanations.

parse_response never raises; any string, the empty one included, yields a
result with at least one of code/analysis/explanation set.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from codegate.app.models import ExecutionResult

FENCE = "```"

LIST_ITEM_PATTERN = re.compile(r"^(?:[-*]|\d+\.)\s+(.*)$")
METADATA_PATTERN = re.compile(r"^(?:language|framework)\s*:", re.IGNORECASE)

SECTION_KEYWORDS = {
    "analyze": ("analysis", "assessment", "overview", "summary"),
    "review": ("review", "feedback", "assessment", "recommendation"),
}


@dataclass
class FencedRegion:
    """A fenced code block."""
    language: Optional[str]
    content: str


@dataclass
class ScannedText:
    """Result of one pass over the raw text."""
    lines: list[str]
    regions: list[FencedRegion] = field(default_factory=list)
    # (line index, line) for every line outside fenced regions
    prose: list[tuple[int, str]] = field(default_factory=list)


def scan(raw_text: str) -> ScannedText:
    """Split raw text into fenced regions and prose lines."""
    lines = [line.rstrip("\r") for line in raw_text.split("\n")]
    scanned = ScannedText(lines=lines)

    language: Optional[str] = None
    body: Optional[list[str]] = None  # None while outside a region

    for index, line in enumerate(lines):
        stripped = line.strip()
        if body is None:
            if stripped.startswith(FENCE):
                language = stripped[len(FENCE):].strip() or None
                body = []
            else:
                scanned.prose.append((index, line))
        elif stripped == FENCE:
            scanned.regions.append(FencedRegion(language, "\n".join(body).strip()))
            body = None
        else:
            body.append(line)

    if body is not None:
        scanned.regions.append(FencedRegion(language, "\n".join(body).strip()))

    return scanned


def extract_suggestions(scanned: ScannedText) -> list[str]:
    """Collect bullet and numbered list items from prose lines, in order."""
    suggestions = []
    for _, line in scanned.prose:
        match = LIST_ITEM_PATTERN.match(line.strip())
        if match:
            item = match.group(1).strip()
            if item:
                suggestions.append(item)
    return suggestions


def _suggestions_or_text(scanned: ScannedText, raw_text: str) -> Optional[list[str]]:
    suggestions = extract_suggestions(scanned)
    if suggestions:
        return suggestions
    return [raw_text] if raw_text.strip() else None


def _section_from_keyword(scanned: ScannedText, action: str) -> Optional[str]:
    keywords = SECTION_KEYWORDS.get(action, ())
    for index, line in scanned.prose:
        lowered = line.lower()
        if any(keyword in lowered for keyword in keywords):
            return "\n".join(scanned.lines[index:]).strip()
    return None


def _explanation(scanned: ScannedText, raw_text: str) -> Optional[str]:
    kept = [line for _, line in scanned.prose if not METADATA_PATTERN.match(line.strip())]
    explanation = "\n".join(kept).strip()
    if explanation:
        return explanation
    # Output was nothing but code; keep the whole reply as explanation
    return raw_text if raw_text.strip() else None


def parse_response(raw_text: str, action: str) -> ExecutionResult:
    """Build a structured result for action from the assistant's raw output.

    Args:
        raw_text: Complete stdout of the assistant
        action: generate | analyze | optimize | review

    Returns:
        ExecutionResult; falls back to the raw text as explanation when
        nothing else could be extracted
    """
    scanned = scan(raw_text)
    result = ExecutionResult()

    if action in ("generate", "optimize") and scanned.regions:
        result.code = scanned.regions[0].content

    if action == "generate":
        result.explanation = _explanation(scanned, raw_text)
    elif action == "optimize":
        result.suggestions = _suggestions_or_text(scanned, raw_text)
    elif action in ("analyze", "review"):
        result.analysis = _section_from_keyword(scanned, action)
        result.suggestions = _suggestions_or_text(scanned, raw_text)

    if result.code is None and result.analysis is None and result.explanation is None:
        result.explanation = raw_text

    return result
