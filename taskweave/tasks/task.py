"""
Task - a single schedulable unit of work.

A task pipes its input through a set of capabilities, either sequentially
or by letting a reasoning model choose which capabilities to call. One call
to ``execute`` is one attempt; retries are driven by the WaveScheduler.

State transitions within an attempt::

    pending -> running -> completed | failed

``cancel()`` forces ``failed`` with a TaskCancelledError. In-flight
capability calls are not interrupted, but every later checkpoint refuses
to proceed.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from loguru import logger

from taskweave.capabilities.base import (
    Capability,
    CapabilityCatalog,
    CapabilitySelector,
    CompletionOptions,
    Message,
    ReasoningModel,
    ToolCall,
)
from taskweave.capabilities.intent import IntentRecognizer
from taskweave.capabilities.tool_calls import completion_text, parse_completion
from taskweave.core.exceptions import (
    CapabilityExecutionError,
    TaskAlreadyRunningError,
    TaskCancelledError,
    UnresolvedDependencyError,
)
from taskweave.knowledge.memory import (
    TASK_CONTEXT,
    TASK_EVENT,
    TASK_RESULT,
    TASK_TOOL,
    Memory,
    MemoryEntry,
    latest_entry,
)
from taskweave.tasks.models import (
    CONTEXT_KEY,
    TaskConfig,
    TaskResult,
    TaskSnapshot,
    TaskStatus,
    as_input_dict,
)

if TYPE_CHECKING:
    from taskweave.knowledge.store import TaskStore


def utcnow() -> datetime:
    """Get the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def strip_context(output: Any) -> Any:
    """Drop the ``_context`` key from a dict output unless nothing else remains."""
    if isinstance(output, dict) and CONTEXT_KEY in output:
        stripped = {k: v for k, v in output.items() if k != CONTEXT_KEY}
        if stripped:
            return stripped
    return output


class Task:
    """
    A unit of work with identity, configuration and a status state machine.

    Attributes:
        id: Unique identifier (uuid4 when the config has none).
        config: Task configuration.
        status: Current TaskStatus.
        result: TaskResult, set when the task reaches a terminal status.
        retries: Number of retry attempts so far.
        capabilities: Capabilities resolved for this task.

    Example:
        >>> task = Task(TaskConfig(name="greet", plugins=["echo"]), catalog=catalog)
        >>> result = await task.execute({"text": "hello"})
        >>> task.status
        <TaskStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        config: TaskConfig,
        catalog: CapabilityCatalog | None = None,
        memory: Memory | None = None,
        model: ReasoningModel | None = None,
        store: "TaskStore | None" = None,
        selector: CapabilitySelector | None = None,
    ):
        self.id: str = config.id or str(uuid4())
        config.id = self.id
        if config.model is None and model is not None:
            config.model = model
        self.config = config

        self.status = TaskStatus.PENDING
        self.result: TaskResult | None = None
        self.retries = 0
        self.capabilities: list[Capability] = []
        self.created_at = utcnow()
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None
        self.agent_id = config.agent_id
        self.session_id = config.session_id
        self.context_id = config.session_id

        self.catalog = catalog
        self.memory = memory
        self.store = store
        self.selector = selector

        self.is_cancelled = False
        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._last_saved_state = ""
        self._save_lock = asyncio.Lock()
        self._pending_save: asyncio.Task | None = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def dependencies(self) -> list[str]:
        return self.config.dependencies

    @property
    def model(self) -> ReasoningModel | None:
        return self.config.model

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_running(self) -> bool:
        """Check whether an execution attempt is in flight."""
        return self._in_flight

    def set_memory(self, memory: Memory | None) -> None:
        """Set the memory backend for this task."""
        self.memory = memory

    def set_model(self, model: ReasoningModel | None) -> None:
        """Set the reasoning model for this task."""
        self.config.model = model

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute(self, input: Any = None) -> TaskResult:
        """
        Run one execution attempt.

        Args:
            input: Input for this attempt. Falls back to ``config.input``.

        Returns:
            TaskResult of the attempt. Failures are returned, not raised.

        Raises:
            TaskAlreadyRunningError: If an attempt is already in flight.
        """
        if self._in_flight:
            raise TaskAlreadyRunningError(self.id)

        self._in_flight = True
        self._idle.clear()
        try:
            return await self._execute(input)
        finally:
            self._in_flight = False
            self._idle.set()

    async def wait_until_idle(self) -> TaskResult | None:
        """Wait for an in-flight attempt to finish and return the latest result."""
        await self._idle.wait()
        return self.result

    async def _execute(self, input: Any) -> TaskResult:
        await self.wait_for_save()

        effective_input = input if input is not None else self.config.input
        logger.debug(f"Task {self.id} ({self.name}) execution started")

        if self.is_cancelled:
            logger.info(f"Task {self.id} was cancelled before it started")
            return await self._finish_failed(TaskCancelledError())

        await self.add_memory_entry(f"Task execution started: {self.name}")

        try:
            await self.load_capabilities()
            self._checkpoint()

            self.status = TaskStatus.RUNNING
            self.started_at = utcnow()
            self.completed_at = None
            self.result = None
            await self.save()

            context = await self.get_context() if self.session_id else {}
            enriched = {**as_input_dict(effective_input), CONTEXT_KEY: context}

            if self.capabilities:
                await self.add_memory_entry(
                    f"Available plugins: {', '.join(c.name for c in self.capabilities)}"
                )
            else:
                logger.warning(
                    f"Task {self.id} has no capabilities to execute, "
                    f"the task may not complete as expected"
                )

            if self.model is not None and self.capabilities:
                output = await self._execute_with_model(enriched)
            else:
                output = await self._execute_sequential(enriched)

            self._checkpoint()
            output = strip_context(output)

            if self.session_id:
                context = {**context, self.name: output, "lastTaskOutput": output}
                await self.save_context(context)

            # No await between this check and the terminal status
            self._checkpoint()
            self.result = TaskResult(success=True, output=output, context=context)
            self.status = TaskStatus.COMPLETED
            self.completed_at = utcnow()
            logger.info(f"Task {self.id} ({self.name}) completed")

            await self.add_memory_entry(
                f"Task completed successfully: {self.name}",
                metadata={"output": json.dumps(output, default=str)[:500]},
            )
            await self.save()
            return self.result

        except Exception as e:
            logger.error(f"Task {self.id} ({self.name}) failed: {e}")
            return await self._finish_failed(e)

    async def _finish_failed(self, error: BaseException) -> TaskResult:
        self.result = TaskResult.failure(error)
        self.status = TaskStatus.FAILED
        self.completed_at = utcnow()

        await self.add_memory_entry(
            f"Task error: {error}",
            metadata={"errorType": type(error).__name__},
        )
        await self.save()
        return self.result

    def _checkpoint(self) -> None:
        if self.is_cancelled:
            raise TaskCancelledError("Task was cancelled during execution")

    async def _execute_sequential(self, enriched: dict[str, Any]) -> Any:
        """Pipe the input through each capability in declared order."""
        logger.debug(
            f"Task {self.id} using sequential execution ({len(self.capabilities)} capabilities)"
        )
        current: Any = enriched

        for capability in self.capabilities:
            self._checkpoint()
            logger.debug(f"Executing capability '{capability.name}' for task {self.id}")
            try:
                output = await capability.invoke(current)
            except Exception as e:
                logger.error(f"Error executing capability '{capability.name}': {e}")
                raise CapabilityExecutionError(capability.name, e) from e

            if output is not None:
                current = output

        return current

    async def _execute_with_model(self, enriched: dict[str, Any]) -> dict[str, Any]:
        """Let the model call capabilities as tools, then summarise the results."""
        model = self.model
        model_name = getattr(model, "name", type(model).__name__)
        logger.debug(f"Task {self.id} using model {model_name} with capabilities")
        await self.add_memory_entry(f"Using model {model_name} to execute task with plugins")

        messages = [Message(role="user", content=self._task_prompt(enriched))]
        options = CompletionOptions(
            tools=[c.to_tool_schema() for c in self.capabilities],
            tool_calling=True,
            system_message=self._system_prompt(),
        )

        # A failure of this call fails the task
        completion = await model.complete(messages, options)
        parsed = parse_completion(completion)
        tools_used = [c.name for c in self.capabilities]

        if not parsed.has_tool_calls and parsed.format == "plain":
            logger.warning(
                f"Task {self.id} response does not include tool calls, "
                f"the model may not be using the tools properly"
            )
            return {**enriched, "result": parsed.content, "tools_used": tools_used}

        logger.info(f"Task {self.id} response includes {len(parsed.tool_calls)} tool calls")

        tool_results: list[dict[str, Any]] = []
        for call in parsed.tool_calls:
            tool_results.append(await self._run_tool_call(call, enriched))

        output: dict[str, Any] = {
            **enriched,
            "tool_calls": [c.model_dump() for c in parsed.tool_calls],
            "tool_results": tool_results,
            "tools_used": tools_used,
        }
        if parsed.format == "text":
            output["result"] = parsed.content
        else:
            output["content"] = parsed.content

        if tool_results:
            try:
                logger.info(f"Generating response based on {len(tool_results)} tool results")
                summary_response = await model.complete(
                    [*messages, Message(role="system", content=self._results_prompt(tool_results))]
                )
                summary = completion_text(summary_response)
                output["content"] = summary
                output["summary"] = summary
            except Exception as e:
                logger.error(f"Error generating summary from tool results: {e}")

        return output

    async def _run_tool_call(self, call: ToolCall, enriched: dict[str, Any]) -> dict[str, Any]:
        arguments_text = json.dumps(call.arguments, default=str)
        logger.info(f"Tool call: {call.name} with arguments: {arguments_text}")
        await self.add_memory_entry(
            f"Tool call: {call.name} with arguments: {arguments_text}", TASK_TOOL
        )

        entry: dict[str, Any] = {"name": call.name, "arguments": call.arguments}
        capability = next((c for c in self.capabilities if c.name == call.name), None)

        if capability is None:
            entry["error"] = f"Tool {call.name} not found"
            logger.warning(entry["error"])
            await self.add_memory_entry(
                entry["error"], TASK_RESULT, {"toolName": call.name, "success": False}
            )
            return entry

        self._checkpoint()
        try:
            entry["result"] = await capability.invoke({**enriched, **call.arguments})
        except Exception as e:
            logger.error(f"Error executing tool {call.name}: {e}")
            entry["error"] = str(e)
            await self.add_memory_entry(
                f"Tool {call.name} execution failed: {e}",
                TASK_RESULT,
                {"toolName": call.name, "success": False},
            )
            return entry

        await self.add_memory_entry(
            f"Tool {call.name} executed successfully",
            TASK_RESULT,
            {"toolName": call.name, "success": True},
        )
        return entry

    def _task_prompt(self, enriched: dict[str, Any]) -> str:
        lines = [f"Complete this task: {self.name}"]
        if self.config.description:
            lines.append(f"Description: {self.config.description}")
        lines.append(f"Input: {json.dumps(enriched, default=str)}")
        return "\n".join(lines)

    def _system_prompt(self) -> str:
        tools = "\n".join(
            f"- {c.name}: {c.description or 'No description provided'}" for c in self.capabilities
        )
        description = f"Description: {self.config.description}\n" if self.config.description else ""
        return (
            "You are an AI assistant that can use tools to complete tasks.\n"
            f"Complete this task: {self.name}\n"
            f"{description}\n"
            f"Available tools:\n{tools}\n\n"
            "Use the available tools to fulfill this task effectively. "
            "When a tool should be used, call it with appropriate parameters."
        )

    @staticmethod
    def _results_prompt(tool_results: list[dict[str, Any]]) -> str:
        blocks = []
        for tr in tool_results:
            outcome = (
                f"ERROR: {tr['error']}" if "error" in tr else json.dumps(tr.get("result"), default=str)
            )
            blocks.append(
                f"Tool: {tr['name']}\n"
                f"Arguments: {json.dumps(tr['arguments'], default=str)}\n"
                f"Result: {outcome}"
            )
        return (
            "The following tools were called based on the user's request:\n"
            + "\n\n".join(blocks)
            + "\n\nPlease analyze these results and generate a helpful, coherent response "
            "that summarizes what was done and the outcome."
        )

    # =========================================================================
    # CAPABILITY RESOLUTION
    # =========================================================================

    async def load_capabilities(self) -> list[Capability]:
        """
        Resolve the capabilities this task uses.

        Explicit ``config.plugins`` win; otherwise the selector is asked when
        a model is available. Selector failures are logged and never fatal.
        """
        if self.capabilities:
            return self.capabilities

        if self.config.plugins and self.catalog is not None:
            found = self.catalog.resolve(self.config.plugins)
            if found:
                logger.info(f"Task {self.id} using {len(found)} capabilities from config")
                self.capabilities = found
                return self.capabilities

        if self.model is not None and self.catalog is not None and len(self.catalog) > 0:
            selector = self.selector or IntentRecognizer()
            try:
                selected = await selector.recognize_intent(
                    self.name,
                    self.config.description or self.name,
                    self.catalog.all(),
                    self.model,
                )
            except Exception as e:
                logger.error(f"Error selecting capabilities for task {self.id}: {e}")
                selected = []

            if selected:
                self.capabilities = list(selected)
                self.config.plugins = [c.name for c in selected]
                logger.info(f"Selected capabilities for task {self.id}: {self.config.plugins}")
                return self.capabilities

        logger.warning(f"No capabilities selected for task '{self.name}'")
        return self.capabilities

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def cancel(self) -> None:
        """Cancel the task. A pending or running task is failed immediately."""
        self.is_cancelled = True
        if self.status in (TaskStatus.PENDING, TaskStatus.RUNNING):
            self.status = TaskStatus.FAILED
            self.result = TaskResult.failure(TaskCancelledError())
            self.completed_at = utcnow()
            logger.info(f"Task {self.id} ({self.name}) cancelled")
            self.schedule_save()

    async def prepare_retry(self) -> None:
        """Reset the task to pending for another attempt."""
        self.retries += 1
        self.status = TaskStatus.PENDING
        self.result = None
        self.started_at = None
        self.completed_at = None
        logger.info(f"Retrying task '{self.id}', retry {self.retries}")
        await self.add_memory_entry(f"Retrying task (retry {self.retries})")
        await self.save()

    async def mark_unresolved(self, error: UnresolvedDependencyError) -> TaskResult:
        """Fail a task that never became ready."""
        logger.warning(f"Task {self.id} ({self.name}) failed: {error}")
        return await self._finish_failed(error)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def snapshot(self) -> TaskSnapshot:
        """Get a serializable view of the task."""
        return TaskSnapshot(
            id=self.id,
            name=self.name,
            description=self.config.description,
            status=self.status,
            retries=self.retries,
            plugins=list(self.config.plugins),
            input=self.config.input,
            dependencies=list(self.config.dependencies),
            result=self.result.to_dict() if self.result else None,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            agent_id=self.agent_id,
            session_id=self.session_id,
            context_id=self.context_id,
        )

    def _state_key(self) -> str:
        return json.dumps(
            {
                "status": self.status.value,
                "retries": self.retries,
                "result": self.result.to_dict() if self.result else None,
                "started_at": self.started_at,
                "completed_at": self.completed_at,
            },
            default=str,
            sort_keys=True,
        )

    async def save(self) -> None:
        """Persist the task if its state changed. Store errors are logged."""
        if self.store is None:
            return

        async with self._save_lock:
            state = self._state_key()
            if state == self._last_saved_state:
                return
            try:
                await self.store.save(self.snapshot())
            except Exception as e:
                logger.error(f"Error saving task {self.id}: {e}")
                return
            if not self._last_saved_state:
                logger.debug(f"Task {self.id} saved to database")
            self._last_saved_state = state

    def schedule_save(self) -> None:
        """Start a background save when an event loop is running."""
        if self.store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._pending_save = loop.create_task(self.save())

    async def wait_for_save(self) -> None:
        """Wait for any background save to finish."""
        pending = self._pending_save
        if pending is not None and not pending.done():
            await pending
        self._pending_save = None

    @classmethod
    def from_snapshot(cls, snapshot: TaskSnapshot, **kwargs: Any) -> "Task":
        """
        Restore a task from a stored record.

        Status, retries, timestamps and result survive; the restored task is
        considered already saved.
        """
        config = TaskConfig(
            id=snapshot.id,
            name=snapshot.name,
            description=snapshot.description,
            plugins=list(snapshot.plugins),
            input=snapshot.input,
            dependencies=list(snapshot.dependencies),
            agent_id=snapshot.agent_id,
            session_id=snapshot.session_id,
        )
        task = cls(config, **kwargs)
        task.status = snapshot.status
        task.retries = snapshot.retries
        if snapshot.created_at is not None:
            task.created_at = snapshot.created_at
        task.started_at = snapshot.started_at
        task.completed_at = snapshot.completed_at
        task.context_id = snapshot.context_id
        if snapshot.result is not None:
            task.result = TaskResult.from_dict(snapshot.result)
        task._last_saved_state = task._state_key()
        return task

    # =========================================================================
    # MEMORY SIDE CHANNEL
    # =========================================================================

    async def add_memory_entry(
        self,
        content: str,
        role: str = TASK_EVENT,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit entry for this task. Failures are logged."""
        if self.memory is None or not self.session_id:
            return
        try:
            await self.memory.add(
                MemoryEntry(
                    agent_id=self.agent_id or "system",
                    session_id=self.session_id,
                    role=role,
                    content=content,
                    metadata={
                        "taskId": self.id,
                        "taskName": self.name,
                        "taskStatus": self.status.value,
                        **(metadata or {}),
                    },
                )
            )
        except Exception as e:
            logger.error(f"Error adding task memory for task {self.id}: {e}")

    async def get_task_memory(self) -> list[MemoryEntry]:
        """Get the memory entries written by this task."""
        if self.memory is None or not self.session_id:
            return []
        try:
            entries = await self.memory.get_by_session(self.session_id)
        except Exception as e:
            logger.error(f"Error getting task memory for task {self.id}: {e}")
            return []
        return [e for e in entries if e.metadata.get("taskId") == self.id]

    async def get_context(self) -> dict[str, Any]:
        """Load the latest session context, or an empty dict."""
        if self.memory is None or not self.session_id:
            return {}
        try:
            entries = await self.memory.get_by_session(self.session_id)
            entry = latest_entry(entries, TASK_CONTEXT)
            if entry is None:
                return {}
            context = json.loads(entry.content)
        except Exception as e:
            logger.error(f"Error retrieving task context for session {self.session_id}: {e}")
            return {}
        return context if isinstance(context, dict) else {}

    async def save_context(self, context: dict[str, Any]) -> None:
        """Write the accumulated session context. Failures are logged."""
        if self.memory is None or not self.session_id:
            logger.debug(f"No memory for task {self.id}, skipping context save")
            return
        try:
            await self.memory.add(
                MemoryEntry(
                    agent_id=self.agent_id or "system",
                    session_id=self.session_id,
                    role=TASK_CONTEXT,
                    content=json.dumps(context, default=str),
                    metadata={
                        "taskId": self.id,
                        "taskName": self.name,
                        "contextType": "task_execution_context",
                    },
                )
            )
        except Exception as e:
            logger.error(f"Error saving task context for session {self.session_id}: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = self.snapshot().to_dict()
        for key in ("created_at", "started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        data["max_retries"] = self.config.max_retries
        data["is_cancelled"] = self.is_cancelled
        return data

    def __repr__(self) -> str:
        return f"Task(id={self.id!r}, name={self.name!r}, status={self.status.value})"
