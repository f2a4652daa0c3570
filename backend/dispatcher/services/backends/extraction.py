"""
Answer extraction for agentic task payloads.

The task payload shape is not stable across task states and API versions,
so extraction is an ordered chain of pure strategies. Each strategy takes
the raw payload and returns text or None; the first non-empty result wins.
"""
import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

Extractor = Callable[[Dict[str, Any]], Optional[str]]

ASSISTANT_ROLE = "assistant"
FINAL_TEXT_PART = "output_text"
LEGACY_TEXT_PARTS = ("text", "output_text")


def _join(parts: List[str]) -> Optional[str]:
    text = "\n".join(parts).strip()
    return text or None


def _content_parts(block: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(block, dict):
        return ()
    content = block.get("content")
    if not isinstance(content, list):
        return ()
    return (part for part in content if isinstance(part, dict))


def _output_blocks(payload: Dict[str, Any]) -> List[Any]:
    output = payload.get("output")
    return output if isinstance(output, list) else []


def extract_assistant_output(payload: Dict[str, Any]) -> Optional[str]:
    """Assistant-authored blocks, ``output_text`` parts only (current format)."""
    parts = [
        part["text"]
        for block in _output_blocks(payload)
        if isinstance(block, dict) and block.get("role") == ASSISTANT_ROLE
        for part in _content_parts(block)
        if part.get("type") == FINAL_TEXT_PART and isinstance(part.get("text"), str)
    ]
    return _join(parts)


def extract_legacy_content(payload: Dict[str, Any]) -> Optional[str]:
    """Any block regardless of role, ``text`` or ``output_text`` parts (older format)."""
    parts = [
        part["text"]
        for block in _output_blocks(payload)
        for part in _content_parts(block)
        if part.get("type") in LEGACY_TEXT_PARTS and isinstance(part.get("text"), str)
    ]
    return _join(parts)


def _flat_field(name: str) -> Extractor:
    def extract(payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get(name)
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            value = json.dumps(value)
        return value.strip() or None

    extract.__name__ = f"extract_{name}_field"
    return extract


extract_result_field = _flat_field("result")
extract_response_field = _flat_field("response")
extract_output_text_field = _flat_field("output_text")

EXTRACTORS: Tuple[Extractor, ...] = (
    extract_assistant_output,
    extract_legacy_content,
    extract_result_field,
    extract_response_field,
    extract_output_text_field,
)


def extract_text(
    payload: Any,
    extractors: Tuple[Extractor, ...] = EXTRACTORS,
) -> Optional[str]:
    """Run the extractor chain and return the first non-empty text, or None."""
    if not isinstance(payload, dict):
        return None
    for extractor in extractors:
        text = extractor(payload)
        if text:
            return text
    return None
