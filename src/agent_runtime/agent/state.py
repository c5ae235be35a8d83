"""
Agent state, execution results and execution context.
"""

from dataclasses import dataclass
from typing import Union

from ..llm.errors import LLMError

SCHEDULED_TASK_NOTE = (
    "IMPORTANT: You are executing a scheduled task. "
    "Do not ask clarification questions. Use your best judgment and proceed autonomously. "
    "If you need to inform the user of something, include it in your response."
)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Thinking:
    pass


@dataclass(frozen=True)
class ExecutingTools:
    tool_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class Completed:
    response: str


@dataclass(frozen=True)
class Error:
    message: str
    cause: BaseException | None = None


AgentState = Union[Idle, Thinking, ExecutingTools, Completed, Error]


def is_terminal(state: AgentState) -> bool:
    return isinstance(state, (Completed, Error))


@dataclass
class AgentResult:
    """Outcome of one ``execute()`` call."""

    success: bool
    output: str = ""
    error: str | None = None
    cause: BaseException | None = None

    @property
    def llm_error(self) -> LLMError | None:
        return self.cause if isinstance(self.cause, LLMError) else None

    @classmethod
    def ok(cls, output: str) -> "AgentResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, cause: BaseException | None = None) -> "AgentResult":
        return cls(success=False, error=error, cause=cause)


@dataclass(frozen=True)
class ExecutionContext:
    """Whether the agent runs with a user present or as a scheduled job."""

    scheduled: bool = False
    job_id: str | None = None
    trigger_time: float | None = None

    @property
    def is_interactive(self) -> bool:
        return not self.scheduled

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled

    @classmethod
    def for_job(cls, job_id: str, trigger_time: float | None = None) -> "ExecutionContext":
        return cls(scheduled=True, job_id=job_id, trigger_time=trigger_time)

    def apply_to_prompt(self, system_prompt: str) -> str:
        if self.scheduled:
            return f"{system_prompt}\n\n{SCHEDULED_TASK_NOTE}"
        return system_prompt


INTERACTIVE = ExecutionContext()
