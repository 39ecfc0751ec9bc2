"""
Agent Module

Claude-backed receptionist for the chat channel:
- Reply contract: tagged union of plain replies and scheduling intents
- ReceptionistAgent: completion, reply parsing, booking hand-off
"""

from app.core.agent.reply import (
    AssistantReply,
    PlainReply,
    SchedulingIntentReply,
    parse_assistant_reply,
)

__all__ = [
    "AssistantReply",
    "PlainReply",
    "SchedulingIntentReply",
    "parse_assistant_reply",
]
