"""Built-in capabilities."""

from typing import Any

from taskweave.capabilities.base import CapabilityCatalog, FunctionCapability, ParamSpec


def _echo(params: dict[str, Any]) -> dict[str, Any]:
    """Return the parameters unchanged, without internal keys."""
    return {k: v for k, v in params.items() if not k.startswith("_")} or dict(params)


echo = FunctionCapability(
    "echo",
    _echo,
    description="Return the task input unchanged",
    parameters=[ParamSpec(name="input", type="string", description="Value to echo")],
)


def default_catalog() -> CapabilityCatalog:
    """Create a catalog holding the built-in capabilities."""
    return CapabilityCatalog([echo])
