"""
Delegation to specialized sub-agents.

``delegate_to_agent`` runs a named ``AgentProfile`` in a fresh coordinator
with its own system prompt and a restricted copy of the tool registry. The
sub-agent does not see the calling conversation; the task text is all it
gets.
"""

import json
import time
from dataclasses import dataclass

import structlog

from ..config import Settings, get_settings
from ..llm.base import BaseLLM, ToolDefinition
from ..tools.base import Plugin, ToolResult
from ..tools.registry import RegisteredTool, ToolRegistry
from .coordinator import AgentCoordinator
from .meta_tools import ACTIVATE_TOOLS, SUMMARIZE_CONVERSATION
from .store import MessageStore

logger = structlog.get_logger()

DELEGATE_TOOL = "delegate_to_agent"
DELEGATION_TIMEOUT = 600.0
MAX_DELEGATE_ITERATIONS = 50


@dataclass
class AgentProfile:
    """A named sub-agent configuration."""

    name: str
    system_prompt: str
    description: str = ""
    model: str | None = None
    allowed_tools: list[str] | None = None


class DelegateAgentPlugin(Plugin):
    """Serves ``delegate_to_agent`` for a fixed set of profiles."""

    def __init__(
        self,
        llm: BaseLLM,
        tool_registry: ToolRegistry,
        profiles: list[AgentProfile],
        settings: Settings | None = None,
        message_store: MessageStore | None = None,
    ):
        self.llm = llm
        self.tool_registry = tool_registry
        self.profiles = {profile.name: profile for profile in profiles}
        self.settings = settings or get_settings()
        self.message_store = message_store

    def definition(self) -> ToolDefinition:
        if self.profiles:
            listing = "\n".join(
                f"- {p.name}: {p.description}" if p.description else f"- {p.name}"
                for p in self.profiles.values()
            )
        else:
            listing = "(no agent profiles available for delegation)"

        agent_param = {"type": "string", "description": "Name of the agent profile to delegate to"}
        if self.profiles:
            agent_param["enum"] = list(self.profiles)

        return ToolDefinition(
            name=DELEGATE_TOOL,
            description=(
                "Delegate a task to a specialized agent profile.\n\n"
                "The sub-agent runs independently with its own system prompt and tools. "
                "It does NOT see the current conversation history, so describe the task "
                "fully in the 'task' parameter.\n\n"
                f"Available agents for delegation:\n{listing}\n\n"
                "Only delegate once per task and use the sub-agent's result directly."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "agent": agent_param,
                    "task": {
                        "type": "string",
                        "description": (
                            "Complete description of the task. Be specific: "
                            "the sub-agent has no access to the current conversation."
                        ),
                    },
                },
                "required": ["agent", "task"],
            },
            timeout=DELEGATION_TIMEOUT,
        )

    def register(self, registry: ToolRegistry | None = None) -> None:
        """Register ``delegate_to_agent`` on ``registry`` (default: the shared one)."""
        target = registry if registry is not None else self.tool_registry
        target.register_plugin(DELEGATE_TOOL, self, [self.definition()])

    def _sub_registry(self, profile: AgentProfile) -> ToolRegistry:
        allowed = set(profile.allowed_tools) if profile.allowed_tools is not None else None

        def keep(entry: RegisteredTool) -> bool:
            if entry.name in (DELEGATE_TOOL, ACTIVATE_TOOLS, SUMMARIZE_CONVERSATION):
                return False
            return allowed is None or entry.name in allowed

        return self.tool_registry.copy_filtered(keep)

    async def execute(self, tool_name: str, arguments: str) -> ToolResult:
        if tool_name != DELEGATE_TOOL:
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")

        try:
            args = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            return ToolResult(success=False, error=f"Invalid JSON arguments: {e}", exception=e)
        if not isinstance(args, dict):
            return ToolResult(success=False, error="Arguments must be a JSON object")

        agent_name = args.get("agent")
        if not agent_name:
            return ToolResult(success=False, error="Missing required field: agent")
        task = args.get("task")
        if not task:
            return ToolResult(success=False, error="Missing required field: task")

        profile = self.profiles.get(agent_name)
        if profile is None:
            return ToolResult(success=False, error=f"Agent profile '{agent_name}' not found")

        logger.info("Delegating to agent", agent=agent_name, task=task[:100])

        coordinator = AgentCoordinator(
            self.llm,
            self._sub_registry(profile),
            self.settings,
            message_store=self.message_store,
            conversation_id=f"delegate_{agent_name}_{int(time.time() * 1000)}",
            allowed_tools=profile.allowed_tools,
            enable_activation=False,
            max_iterations=min(self.settings.max_iterations, MAX_DELEGATE_ITERATIONS),
        )
        try:
            result = await coordinator.execute(task, profile.system_prompt, profile.model)
        finally:
            coordinator.close()

        if result.success:
            logger.info("Delegated agent completed", agent=agent_name)
            return ToolResult(success=True, output=result.output)

        logger.error("Delegated agent failed", agent=agent_name, error=result.error)
        return ToolResult(
            success=False,
            error=f"Agent '{agent_name}' failed: {result.error}",
            exception=result.cause,
        )
