"""
Conversational workflows: register, license, transfer, verify and the
read-only queries, plus the engine that routes messages to them.
"""

from .engine import WorkflowEngine, parse_command
from .messages import Attachment, AttachmentError, InboundMessage, OutboundMessage

__all__ = [
    "Attachment",
    "AttachmentError",
    "InboundMessage",
    "OutboundMessage",
    "WorkflowEngine",
    "parse_command",
]
