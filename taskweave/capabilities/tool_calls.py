"""
Normalisation of model responses into tool calls.

The structured ``{content, tool_calls}`` shape is canonical. Older model
adapters answer in free text::

    Tool Call: search
    Arguments: {"query": "weather"}

which is recovered by ``parse_text_tool_calls``. The text parser is best
effort: anything it cannot read yields no calls.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger
from pydantic import ValidationError

from taskweave.capabilities.base import Completion, ToolCall

ResponseFormat = Literal["structured", "text", "plain"]

_TEXT_TOOL_CALL = re.compile(
    r"Tool Call:[ \t]*(?P<name>[^\n]+?)[ \t]*\n\s*Arguments:[ \t]*(?P<args>\{.*?\})(?=\n\n|\n?\Z)",
    re.DOTALL,
)


@dataclass
class ParsedResponse:
    """A model response split into text content and tool calls."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    format: ResponseFormat = "plain"
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def _decode_arguments(arguments: Any) -> dict[str, Any] | None:
    if arguments is None:
        return {}
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        try:
            decoded = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _coerce_tool_call(raw: Any) -> ToolCall | None:
    """Build a ToolCall from either the flat or the OpenAI-style nested shape."""
    if isinstance(raw, ToolCall):
        return raw
    if not isinstance(raw, dict):
        return None

    function = raw.get("function")
    if isinstance(function, dict):
        name = function.get("name")
        arguments = function.get("arguments")
    else:
        name = raw.get("name")
        arguments = raw.get("arguments")

    if raw.get("type", "function") != "function" or not name:
        return None

    decoded = _decode_arguments(arguments)
    if decoded is None:
        logger.warning(f"Could not decode arguments for tool call '{name}'")
        decoded = {}

    try:
        return ToolCall(id=raw.get("id"), name=name, arguments=decoded)
    except ValidationError as e:
        logger.warning(f"Invalid tool call '{name}': {e}")
        return None


def parse_text_tool_calls(text: str) -> list[ToolCall]:
    """
    Parse legacy ``Tool Call: ... / Arguments: {...}`` text.

    Calls whose arguments are not a JSON object are dropped.

    Example:
        >>> calls = parse_text_tool_calls('Tool Call: echo\\nArguments: {"x": 1}')
        >>> calls[0].name, calls[0].arguments
        ('echo', {'x': 1})
    """
    calls: list[ToolCall] = []
    for match in _TEXT_TOOL_CALL.finditer(text):
        name = match.group("name").strip()
        arguments = _decode_arguments(match.group("args"))
        if not name or arguments is None:
            logger.debug(f"Skipping unparseable text tool call: {match.group(0)!r}")
            continue
        calls.append(ToolCall(name=name, arguments=arguments))
    return calls


def parse_completion(response: Any) -> ParsedResponse:
    """
    Normalise any supported model response.

    Args:
        response: ``Completion``, a dict with ``content``/``tool_calls``, or text.

    Returns:
        ParsedResponse with the detected format.
    """
    if isinstance(response, Completion):
        fmt: ResponseFormat = "structured" if response.tool_calls else "plain"
        return ParsedResponse(response.content, list(response.tool_calls), fmt, response)

    if isinstance(response, dict):
        content = str(response.get("content") or "")
        raw_calls = response.get("tool_calls")
        if isinstance(raw_calls, list):
            calls = [c for c in (_coerce_tool_call(r) for r in raw_calls) if c is not None]
            return ParsedResponse(content, calls, "structured", response)
        return ParsedResponse(content, [], "plain", response)

    text = "" if response is None else str(response)
    if "Tool Call:" in text:
        calls = parse_text_tool_calls(text)
        if calls:
            return ParsedResponse(text, calls, "text", response)
        logger.info("Response mentions tool calls but the format could not be parsed")

    return ParsedResponse(text, [], "plain", response)


def completion_text(response: Any) -> str:
    """Extract the text content of any supported model response."""
    return parse_completion(response).content
