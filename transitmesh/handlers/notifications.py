from __future__ import annotations

import logging

from telegram.ext import Application

from transitmesh.models import AlternativesFound, JourneyUpdate, ProviderStatusChanged
from transitmesh.services.formatter import (
    escape,
    format_alternatives,
    format_journey_update,
    split_message,
)

logger = logging.getLogger(__name__)


class ChatNotifier:
    """Coordinator listener that pushes journey events to one chat.

    Listeners are called synchronously from the monitoring task, so sends
    are scheduled on the application instead of awaited here.
    """

    def __init__(self, app: Application, chat_id: str | int) -> None:
        self.app = app
        self.chat_id = chat_id

    def __call__(self, event: object) -> None:
        text = self.render(event)
        if text is None:
            return
        self.app.create_task(self._send(text), name="journey-notify")

    @staticmethod
    def render(event: object) -> str | None:
        if isinstance(event, JourneyUpdate):
            return format_journey_update(event)
        if isinstance(event, AlternativesFound):
            return format_alternatives(event)
        if isinstance(event, ProviderStatusChanged) and not event.active:
            return f"⚠️ Provider <code>{escape(event.provider_id)}</code> went offline"
        return None

    async def _send(self, text: str) -> None:
        try:
            for chunk in split_message(text):
                await self.app.bot.send_message(chat_id=self.chat_id, text=chunk, parse_mode="HTML")
        except Exception:
            logger.exception("Notification to %s failed", self.chat_id)
