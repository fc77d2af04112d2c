"""Extract the chain of thought and the decision array from a model reply."""

from __future__ import annotations

import json

from ai_futures.ai.schemas import Decision, decision_from_payload
from ai_futures.errors import DecisionParseError

# Typographic quotes that input methods and models substitute for ASCII ones.
_QUOTE_TRANSLATION = str.maketrans(
    {
        "\u201c": '"',
        "\u201d": '"',
        "\u2018": "'",
        "\u2019": "'",
    }
)


def extract_cot_trace(text: str) -> str:
    """Everything before the first ``[``, trimmed; the whole text when none."""
    start = text.find("[")
    if start == -1:
        return text.strip()
    return text[:start].strip()


def find_matching_bracket(text: str, start: int) -> int:
    """Index of the ``]`` closing the ``[`` at ``start``, or -1."""
    if start < 0 or start >= len(text) or text[start] != "[":
        return -1

    depth = 0
    for i in range(start, len(text)):
        char = text[i]
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return i
    return -1


def extract_decision_array(text: str) -> str:
    """Return the first bracket-balanced ``[...]`` substring."""
    start = text.find("[")
    if start == -1:
        raise DecisionParseError("no_decision_array_found", raw_response=text)

    end = find_matching_bracket(text, start)
    if end == -1:
        raise DecisionParseError(
            "unterminated_decision_array",
            raw_response=text,
            fragment=text[start:],
        )
    return text[start : end + 1].strip()


def _reject_constant(name: str) -> float:
    # NaN, Infinity and -Infinity are not JSON.
    raise ValueError(f"non-finite number {name}")


def normalize_quotes(text: str) -> str:
    """Replace curly quotes and apostrophes with their ASCII forms."""
    return text.translate(_QUOTE_TRANSLATION)


def parse_decisions(text: str) -> tuple[str, list[Decision]]:
    """Split a reply into its chain of thought and typed decisions.

    Raises ``DecisionParseError`` when the array is missing, unterminated or not
    valid JSON, and ``DecisionValidationError`` when an element does not match
    its action's field contract.
    """
    cot_trace = extract_cot_trace(text)
    fragment = normalize_quotes(extract_decision_array(text))

    try:
        payload = json.loads(fragment, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise DecisionParseError(
            f"decision_json_invalid: {exc.msg} (line {exc.lineno} column {exc.colno})",
            raw_response=text,
            fragment=fragment,
        ) from exc
    except ValueError as exc:
        raise DecisionParseError(
            f"decision_json_invalid: {exc}", raw_response=text, fragment=fragment
        ) from exc

    if not isinstance(payload, list):
        raise DecisionParseError("decision_json_not_array", raw_response=text, fragment=fragment)

    decisions = [decision_from_payload(index, item) for index, item in enumerate(payload)]
    return cot_trace, decisions
