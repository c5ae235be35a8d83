"""
Agent module - the reason-then-act runtime.

Includes:
- AgentCoordinator: one conversation, with cancel, reset and message injection
- ReActLoop: the model/tool iteration itself
- SummarizationController: keeps history inside the context window
- Meta-tools: activate_tools and summarize_conversation
- DelegateAgentPlugin: sub-agents with a restricted tool set
"""

from .coordinator import ALREADY_RUNNING_ERROR, CANCELLED_ERROR, AgentCoordinator
from .delegate import AgentProfile, DelegateAgentPlugin
from .loop import ConversationContext, ReActLoop
from .meta_tools import ActivateToolsPlugin, SummarizationPlugin
from .state import (
    INTERACTIVE,
    AgentResult,
    AgentState,
    Completed,
    Error,
    ExecutingTools,
    ExecutionContext,
    Idle,
    Thinking,
)
from .store import InMemoryMessageStore, MessageStore
from .summarization import SummarizationConfig, SummarizationController, SummarizationResult

__all__ = [
    "ALREADY_RUNNING_ERROR",
    "CANCELLED_ERROR",
    "AgentCoordinator",
    "AgentProfile",
    "DelegateAgentPlugin",
    "ConversationContext",
    "ReActLoop",
    "ActivateToolsPlugin",
    "SummarizationPlugin",
    "INTERACTIVE",
    "AgentResult",
    "AgentState",
    "Completed",
    "Error",
    "ExecutingTools",
    "ExecutionContext",
    "Idle",
    "Thinking",
    "InMemoryMessageStore",
    "MessageStore",
    "SummarizationConfig",
    "SummarizationController",
    "SummarizationResult",
]
