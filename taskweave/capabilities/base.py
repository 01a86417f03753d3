"""
Capability and reasoning-model interfaces.

A capability is a named function a task can invoke with a parameter map.
Capabilities are registered in an explicit CapabilityCatalog that is handed
to the TaskManager; there is no process-wide registry.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, Literal, Protocol, runtime_checkable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# PARAMETERS
# =============================================================================


class ParamSpec(BaseModel):
    """Declared parameter of a capability."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Parameter name")
    type: str = Field(default="string", description="JSON schema type")
    description: str = Field(default="", description="Parameter description")
    required: bool = Field(default=False, description="Whether the parameter is required")

    def to_schema(self) -> dict[str, Any]:
        """Get the JSON schema property for this parameter."""
        return {
            "type": self.type,
            "description": self.description or f"Parameter {self.name}",
        }


# =============================================================================
# MODEL MESSAGES
# =============================================================================


class Message(BaseModel):
    """A message sent to a reasoning model."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str


class ToolCall(BaseModel):
    """A capability invocation requested by a reasoning model."""

    id: str | None = None
    type: str = "function"
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Completion(BaseModel):
    """Structured model response that may request capability invocations."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class CompletionOptions(BaseModel):
    """Options passed along with a completion request."""

    tools: list[dict[str, Any]] = Field(default_factory=list)
    tool_calling: bool = False
    system_message: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@runtime_checkable
class ReasoningModel(Protocol):
    """Completion service that can request capability invocations."""

    name: str

    async def complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> str | Completion | dict[str, Any]: ...


# =============================================================================
# CAPABILITIES
# =============================================================================


class Capability(ABC):
    """
    Abstract base class for capabilities.

    Subclasses set ``name``, ``description`` and ``parameters`` and implement
    ``execute``. ``execute`` may be a coroutine or a plain function.
    """

    name: str = ""
    description: str = ""
    parameters: Sequence[ParamSpec] = ()

    @abstractmethod
    def execute(self, params: dict[str, Any]) -> Any:
        """
        Run the capability.

        Args:
            params: Parameter map (usually the task's current value).

        Returns:
            Capability output, or an awaitable resolving to it.
        """
        pass

    async def invoke(self, params: dict[str, Any]) -> Any:
        """Run the capability and await the result when it is awaitable."""
        result = self.execute(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_tool_schema(self) -> dict[str, Any]:
        """Format the capability as a tool definition for a reasoning model."""
        parameters: dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
        }
        required = [p.name for p in self.parameters if p.required]
        if required:
            parameters["required"] = required

        return {
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionCapability(Capability):
    """
    Capability wrapping a plain or async callable.

    Example:
        >>> upper = FunctionCapability("upper", lambda p: p["text"].upper())
        >>> await upper.invoke({"text": "hi"})
        'HI'
    """

    def __init__(
        self,
        name: str,
        func: Callable[[dict[str, Any]], Any],
        description: str = "",
        parameters: list[ParamSpec] | None = None,
    ):
        if not name:
            raise ValueError("Capability name must not be empty")
        self.name = name
        self.description = description or (inspect.getdoc(func) or "")
        self.parameters = list(parameters or [])
        self._func = func

    def execute(self, params: dict[str, Any]) -> Any:
        return self._func(params)


# =============================================================================
# CATALOG
# =============================================================================


class CapabilityCatalog:
    """
    Registry of capabilities available to a TaskManager.

    Example:
        >>> catalog = CapabilityCatalog()
        >>> catalog.register(FunctionCapability("echo", lambda p: p))
        >>> catalog.names()
        ['echo']
    """

    def __init__(self, capabilities: list[Capability] | None = None) -> None:
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities or []:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        """Register a capability, replacing any existing one of the same name."""
        if capability.name in self._capabilities:
            logger.warning(f"Replacing capability '{capability.name}' in catalog")
        self._capabilities[capability.name] = capability
        logger.debug(f"Registered capability: {capability.name}")

    def unregister(self, name: str) -> bool:
        """Remove a capability. Returns True if it was registered."""
        return self._capabilities.pop(name, None) is not None

    def get(self, name: str) -> Capability | None:
        """Look up a capability by name."""
        return self._capabilities.get(name)

    def all(self) -> list[Capability]:
        """Get all capabilities in registration order."""
        return list(self._capabilities.values())

    def names(self) -> list[str]:
        """Get registered capability names."""
        return list(self._capabilities)

    def resolve(self, names: list[str]) -> list[Capability]:
        """Look up capabilities by name, skipping unknown names."""
        found: list[Capability] = []
        for name in names:
            capability = self._capabilities.get(name)
            if capability is None:
                logger.warning(f"Capability '{name}' not found in catalog")
                continue
            found.append(capability)
        return found

    def to_tool_schemas(self) -> list[dict[str, Any]]:
        """Format every capability as a tool definition."""
        return [c.to_tool_schema() for c in self._capabilities.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)


@runtime_checkable
class CapabilitySelector(Protocol):
    """Service choosing which capabilities a task should use."""

    async def recognize_intent(
        self,
        task_name: str,
        task_description: str,
        capabilities: list[Capability],
        model: ReasoningModel,
    ) -> list[Capability]: ...
