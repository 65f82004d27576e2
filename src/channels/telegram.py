"""Telegram transport: private chats in, pipeline replies out.

Long polling from a single worker. Only private chats from users on
TELEGRAM_ALLOWED_USER_IDS reach the pipeline; an empty list admits nobody.
Each Telegram user is its own conversation identity (``telegram:<user id>``).
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from aiogram import Bot, Dispatcher, F
from aiogram.enums import ChatType
from aiogram.types import Message
from aiogram.utils.chat_action import ChatActionSender

from src.channels.telegram_render import friendly_error_message, split_message
from src.config.settings import TelegramSettings
from src.conversation.lock import LockManager
from src.conversation.state import MediaRef
from src.gateway.dispatch import dispatch_message
from src.gateway.protocol import InboundMessage
from src.infra.errors import ChannelError, GatewayError
from src.pipeline.engine import ConversationPipeline

logger = structlog.get_logger()


@dataclass(frozen=True)
class AllowList:
    user_ids: frozenset[int]

    @classmethod
    def from_setting(cls, raw: str) -> AllowList:
        """``"111, 222"`` → AllowList({111, 222}). Blank entries are skipped."""
        return cls(frozenset(int(part) for part in raw.split(",") if part.strip()))

    def __contains__(self, user_id: object) -> bool:
        return user_id in self.user_ids


def to_inbound(message: Message) -> InboundMessage | None:
    """Map a Telegram message to a pipeline message. None if there is nothing to handle."""
    sender = message.from_user
    if sender is None:
        return None

    # Media is referenced by Telegram file id; downloading is left to whoever reads the row.
    media: MediaRef | None = None
    if message.photo:
        media = MediaRef(url=f"tg-file:{message.photo[-1].file_id}", content_type="image/jpeg")
    elif message.document is not None:
        media = MediaRef(
            url=f"tg-file:{message.document.file_id}", content_type=message.document.mime_type
        )

    text = message.text or message.caption or ""
    if not text and media is None:
        return None

    return InboundMessage(
        from_identity=f"telegram:{sender.id}",
        text=text,
        attachments=[media] if media else [],
        message_id=f"tg:{message.chat.id}:{message.message_id}",
    )


class TelegramAdapter:
    def __init__(
        self,
        bot_token: str,
        telegram_settings: TelegramSettings,
        lock_manager: LockManager,
        pipeline: ConversationPipeline,
    ) -> None:
        self._bot = Bot(token=bot_token)
        self._dp = Dispatcher()
        self._max_length = telegram_settings.message_max_length
        self._allowed = AllowList.from_setting(telegram_settings.allowed_user_ids)
        self._lock_manager = lock_manager
        self._pipeline = pipeline
        self._username = ""

        self._dp.message.register(self._on_message, F.chat.type == ChatType.PRIVATE)

    async def check_ready(self) -> None:
        """Call getMe once so a bad token fails startup. Raises ChannelError."""
        try:
            me = await self._bot.get_me()
        except Exception as exc:
            raise ChannelError(
                f"Telegram bot token verification failed: {exc}", code="TELEGRAM_AUTH_FAILED"
            ) from exc
        self._username = me.username or ""
        logger.info("telegram_bot_ready", username=self._username, allowed=len(self._allowed.user_ids))

    async def start_polling(self) -> None:
        """Poll until stop() is called."""
        logger.info("telegram_polling_started", username=self._username)
        await self._dp.start_polling(self._bot, handle_signals=False)

    async def stop(self) -> None:
        await self._dp.stop_polling()
        await self._bot.session.close()
        logger.info("telegram_polling_stopped")

    def _admits(self, message: Message) -> bool:
        if message.chat.type != ChatType.PRIVATE or message.from_user is None:
            return False
        if message.from_user.id not in self._allowed:
            logger.warning(
                "telegram_user_denied",
                user_id=message.from_user.id,
                username=message.from_user.username,
            )
            return False
        return True

    async def _on_message(self, message: Message) -> None:
        if not self._admits(message):
            return
        inbound = to_inbound(message)
        if inbound is None:
            return

        try:
            async with ChatActionSender.typing(bot=self._bot, chat_id=message.chat.id):
                reply = await dispatch_message(
                    lock_manager=self._lock_manager,
                    pipeline=self._pipeline,
                    message=inbound,
                )
        except GatewayError as exc:
            logger.warning(
                "telegram_turn_rejected", message_id=inbound.message_id, code=exc.code
            )
            await message.answer(friendly_error_message(exc.code))
            return
        except Exception:
            logger.exception("telegram_turn_failed", message_id=inbound.message_id)
            await message.answer(friendly_error_message(None))
            return

        for chunk in split_message(reply.text or "", self._max_length):
            await message.answer(chunk)
