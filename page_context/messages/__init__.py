from .builder import MAX_HISTORY_STEPS, build_agent_step_messages
from .types import ActionOutcome, AgentAction, AgentStep, Message, OpenTab, PageState, Variable

__all__ = [
    "MAX_HISTORY_STEPS",
    "ActionOutcome",
    "AgentAction",
    "AgentStep",
    "Message",
    "OpenTab",
    "PageState",
    "Variable",
    "build_agent_step_messages",
]
