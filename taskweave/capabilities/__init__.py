"""Capabilities a task can invoke, and the reasoning-model interface."""

from taskweave.capabilities.base import (
    Capability,
    CapabilityCatalog,
    CapabilitySelector,
    Completion,
    CompletionOptions,
    FunctionCapability,
    Message,
    ParamSpec,
    ReasoningModel,
    ToolCall,
)
from taskweave.capabilities.builtin import default_catalog, echo
from taskweave.capabilities.intent import IntentRecognizer
from taskweave.capabilities.tool_calls import (
    ParsedResponse,
    completion_text,
    parse_completion,
    parse_text_tool_calls,
)

__all__ = [
    "Capability",
    "CapabilityCatalog",
    "CapabilitySelector",
    "Completion",
    "CompletionOptions",
    "FunctionCapability",
    "IntentRecognizer",
    "Message",
    "ParamSpec",
    "ParsedResponse",
    "ReasoningModel",
    "ToolCall",
    "completion_text",
    "default_catalog",
    "echo",
    "parse_completion",
    "parse_text_tool_calls",
]
