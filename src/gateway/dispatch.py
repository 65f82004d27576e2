"""Core dispatch: identity lock → pipeline turn → release.

Shared by the webhook endpoint and the Telegram adapter.
SESSION_BUSY propagates as GatewayError; the transport decides how to answer it.
"""

from __future__ import annotations

import structlog

from src.conversation.identity import lock_key, normalize_identity
from src.conversation.lock import LockManager
from src.gateway.protocol import InboundMessage
from src.infra.errors import GatewayError
from src.infra.logging import turn_context
from src.pipeline.engine import ConversationPipeline, PipelineReply

logger = structlog.get_logger()


async def dispatch_message(
    *,
    lock_manager: LockManager,
    pipeline: ConversationPipeline,
    message: InboundMessage,
) -> PipelineReply:
    """Run one conversational turn under the sender's identity lock.

    Raises GatewayError(code="SESSION_BUSY") when another turn for the same
    identity is in progress. Never queues.
    """
    try:
        identity = normalize_identity(message.from_identity)
    except ValueError as e:
        raise GatewayError(str(e), code="BAD_IDENTITY") from e

    key = lock_key(identity)
    token = await lock_manager.acquire(key)
    if token is None:
        raise GatewayError(
            "Conversation is being processed by another request. Please try again.",
            code="SESSION_BUSY",
        )

    try:
        with turn_context(identity=identity, message_id=message.message_id):
            reply = await pipeline.handle(message)
        logger.info(
            "turn_completed",
            identity=identity,
            message_id=message.message_id,
            phase=reply.phase,
            lock_backend=token.backend,
        )
        return reply
    finally:
        # release() never raises; a stale durable claim is taken over after LOCK_STALE_AFTER_SECONDS.
        await lock_manager.release(key, token)
