from __future__ import annotations

from typing import BinaryIO, ContextManager, Optional, Protocol

from pydantic import BaseModel

from common.registry import AssetType


class Attachment(BaseModel):
    """A file the user sent; `file_id` is the transport's handle for it."""

    file_id: str
    kind: AssetType
    file_name: Optional[str] = None


class InboundMessage(BaseModel):
    """
    One message from a user.

    - user_id: stable identity (owner of the session and the wallet).
    - chat_id: where replies go; equals user_id in private chats.
    """

    user_id: str
    chat_id: str
    text: str = ""
    attachment: Optional[Attachment] = None
    update_id: Optional[int] = None


class OutboundMessage(BaseModel):
    """Plain text, optionally with a media URL shown as photo/video/audio/document."""

    text: str
    media_url: Optional[str] = None
    media_kind: Optional[AssetType] = None
    disable_preview: bool = False


def reply(text: str, **kwargs) -> OutboundMessage:
    return OutboundMessage(text=text, **kwargs)


class AttachmentError(RuntimeError):
    """The transport could not fetch a file the user sent."""


class Transport(Protocol):
    """What the workflow core needs from the chat platform."""

    def send(self, chat_id: str, message: OutboundMessage) -> None: ...

    def open_attachment(self, attachment: Attachment) -> ContextManager[BinaryIO]: ...


class Uploader(Protocol):
    def pin_file(self, fh: BinaryIO, filename: str) -> str: ...


__all__ = [
    "Attachment",
    "AttachmentError",
    "InboundMessage",
    "OutboundMessage",
    "Transport",
    "Uploader",
    "reply",
]
