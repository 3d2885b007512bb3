from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from common.telegram import TelegramClient, TelegramError
from workflows.messages import Attachment, AttachmentError, OutboundMessage


logger = logging.getLogger(__name__)

CAPTION_LIMIT = 1024


class TelegramTransport:
    """
    Delivers workflow replies through the Bot API and fetches user files.

    Sends are best-effort: a failed send is logged and dropped so one
    unreachable chat can't stall a worker. A failed media send falls back
    to plain text.
    """

    def __init__(self, client: TelegramClient, *, spool_bytes: int = 8 * 1024 * 1024) -> None:
        self._client = client
        self._spool_bytes = spool_bytes

    def send(self, chat_id: str, message: OutboundMessage) -> None:
        if message.media_url and message.media_kind is not None:
            if self._send_media(chat_id, message):
                return
        try:
            self._client.send_message(
                chat_id,
                message.text,
                disable_web_page_preview=True if message.disable_preview else None,
            )
        except TelegramError as exc:
            logger.warning("sendMessage to %s failed: %s", chat_id, exc)

    def _send_media(self, chat_id: str, message: OutboundMessage) -> bool:
        fits = len(message.text) <= CAPTION_LIMIT
        try:
            self._client.send_media(
                chat_id,
                message.media_kind.value,
                message.media_url,
                caption=message.text if fits else None,
            )
        except TelegramError as exc:
            logger.warning("Media send to %s failed, falling back to text: %s", chat_id, exc)
            return False
        if fits:
            return True
        # Media went out without a caption; the text still has to follow
        return False

    @contextmanager
    def open_attachment(self, attachment: Attachment) -> Iterator[BinaryIO]:
        try:
            path = self._client.get_file_path(attachment.file_id)
            data = self._client.download_file(path)
        except TelegramError as exc:
            raise AttachmentError(f"could not fetch {attachment.file_id}: {exc}") from exc
        logger.info("Downloaded %s (%d bytes)", attachment.file_id, len(data))
        with tempfile.SpooledTemporaryFile(max_size=self._spool_bytes) as fh:
            fh.write(data)
            fh.seek(0)
            yield fh


__all__ = ["TelegramTransport"]
