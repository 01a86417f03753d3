"""Default capability selector that asks a reasoning model to pick tools."""

import json
import re

from loguru import logger

from taskweave.capabilities.base import Capability, Message, ReasoningModel
from taskweave.capabilities.tool_calls import completion_text

SELECTION_PROMPT = """You are a tool selection expert that picks the most relevant tools for a task.
Review the task and available tools and select ONLY the tools that are directly relevant.
Respond ONLY with a JSON array of tool names that should be used, without any explanation.
Example format: ["tool1", "tool2"]"""

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


class IntentRecognizer:
    """
    Select relevant capabilities for a task using a reasoning model.

    The model is asked for a JSON array of capability names. Names are
    matched case-insensitively; anything unparseable yields no selection.

    Example:
        >>> recognizer = IntentRecognizer()
        >>> tools = await recognizer.recognize_intent(
        ...     "fetch page", "Download the landing page", catalog.all(), model
        ... )
    """

    async def recognize_intent(
        self,
        task_name: str,
        task_description: str,
        capabilities: list[Capability],
        model: ReasoningModel,
    ) -> list[Capability]:
        """
        Ask the model which capabilities the task needs.

        Args:
            task_name: Name of the task.
            task_description: Description of the task.
            capabilities: Candidate capabilities.
            model: Reasoning model to consult.

        Returns:
            Selected capabilities, possibly empty.
        """
        if not capabilities:
            logger.debug(f"No capabilities available for task '{task_name}'")
            return []

        logger.info(f"Using model to select capabilities for task '{task_name}'")

        tools_info = [
            {
                "name": c.name,
                "description": c.description,
                "parameters": [p.model_dump() for p in c.parameters],
            }
            for c in capabilities
        ]
        messages = [
            Message(role="system", content=SELECTION_PROMPT),
            Message(
                role="user",
                content=(
                    f"Task name: {task_name}\n"
                    f"Task description: {task_description}\n\n"
                    f"Available tools:\n{json.dumps(tools_info, indent=2)}\n\n"
                    "Select the most appropriate tools for this task and respond "
                    "with a JSON array containing only the tool names."
                ),
            ),
        ]

        try:
            response = await model.complete(messages)
        except Exception as e:
            logger.error(f"Error using model for capability selection: {e}")
            return []

        text = completion_text(response)
        match = _JSON_ARRAY.search(text)
        if not match:
            logger.error("No JSON array found in capability selection response")
            logger.debug(f"Raw selection response: {text}")
            return []

        try:
            names = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse capability selection response: {e}")
            return []

        by_name = {c.name.lower(): c for c in capabilities}
        selected: list[Capability] = []
        for name in names:
            if not isinstance(name, str):
                continue
            capability = by_name.get(name.lower())
            if capability is not None and capability not in selected:
                selected.append(capability)

        return selected
