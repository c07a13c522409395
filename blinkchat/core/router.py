from __future__ import annotations

import logging

from .proto import (
    ChatRelay,
    ChatRequest,
    DeleteRelay,
    DeleteRequest,
    EditRelay,
    EditRequest,
    ErrorEvent,
    HeartbeatRequest,
    InboundMessage,
    RelayValidationError,
    StoppedTypingRequest,
    TypingRelay,
    TypingRequest,
    new_message_id,
)
from .registry import Client, Registry

log = logging.getLogger("blinkchat.core.router")

DEFAULT_MAX_MESSAGE_LENGTH = 500


class MessageRouter:
    """Relays chat traffic between the two members of a pairing.

    Every relayed message produces at most one outbound frame: to the partner on
    success, to the sender on a validation failure. Senders without a partner are
    ignored.
    """

    def __init__(self, registry: Registry, max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> None:
        self.registry = registry
        self.max_message_length = max_message_length

    def route(self, sender: Client, message: InboundMessage) -> None:
        if isinstance(message, HeartbeatRequest):
            sender.alive = True
            return

        partner = self.registry.partner_of(sender)
        if partner is None:
            log.debug("Dropped %s from unpaired client %s", message.type, sender.client_id)
            return

        try:
            if isinstance(message, ChatRequest):
                self._relay_chat(sender, partner, message)
            elif isinstance(message, (TypingRequest, StoppedTypingRequest)):
                partner.send(TypingRelay(type=message.type, sender_id=sender.client_id, nickname=message.nickname))
            elif isinstance(message, EditRequest):
                self._relay_edit(sender, partner, message)
            elif isinstance(message, DeleteRequest):
                self._relay_delete(sender, partner, message)
            else:
                raise TypeError(f"router cannot handle {message.type!r}")
        except RelayValidationError as exc:
            log.debug("Rejected %s from %s: %s", message.type, sender.client_id, exc)
            sender.send(ErrorEvent(message=str(exc)))
            return

        log.debug("Relayed %s %s -> %s", message.type, sender.client_id, partner.client_id)

    def _relay_chat(self, sender: Client, partner: Client, message: ChatRequest) -> None:
        text = message.checked_text(self.max_message_length)
        partner.send(
            ChatRelay(
                sender_id=sender.client_id,
                message_id=message.message_id or new_message_id(),
                message=text,
                nickname=message.nickname,
                reply_to=message.reply_to,
            )
        )

    def _relay_edit(self, sender: Client, partner: Client, message: EditRequest) -> None:
        text = message.checked_text(self.max_message_length)
        partner.send(
            EditRelay(
                sender_id=sender.client_id,
                message_id=message.message_id,
                message=text,
                nickname=message.nickname,
            )
        )

    def _relay_delete(self, sender: Client, partner: Client, message: DeleteRequest) -> None:
        partner.send(
            DeleteRelay(
                sender_id=sender.client_id,
                message_id=message.checked_message_id(),
                nickname=message.nickname,
            )
        )


__all__ = ["MessageRouter", "DEFAULT_MAX_MESSAGE_LENGTH"]
