from __future__ import annotations

import logging

from telegram.ext import Application, CommandHandler

from transitmesh.config import Settings
from transitmesh.handlers.commands import (
    cmd_book,
    cmd_cancel,
    cmd_help,
    cmd_plan,
    cmd_replan,
    cmd_start,
    cmd_status,
)
from transitmesh.handlers.notifications import ChatNotifier
from transitmesh.services.coordinator import Coordinator
from transitmesh.utils.http import close_session

logger = logging.getLogger(__name__)


def create_application(settings: Settings, coordinator: Coordinator) -> Application:
    app = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .post_init(_on_startup)
        .post_shutdown(_on_shutdown)
        .build()
    )

    app.bot_data["coordinator"] = coordinator
    app.bot_data["chat_id"] = settings.telegram_chat_id
    coordinator.subscribe(ChatNotifier(app, settings.telegram_chat_id))

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("plan", cmd_plan))
    app.add_handler(CommandHandler("book", cmd_book))
    app.add_handler(CommandHandler("replan", cmd_replan))
    app.add_handler(CommandHandler("cancel", cmd_cancel))
    app.add_handler(CommandHandler("status", cmd_status))

    logger.info(
        "Bot ready, chat_id=%s, %d providers", settings.telegram_chat_id, len(coordinator.registry),
    )
    return app


async def _on_startup(app: Application) -> None:
    coordinator: Coordinator = app.bot_data["coordinator"]
    await coordinator.initialize_providers()
    coordinator.start_monitoring()


async def _on_shutdown(app: Application) -> None:
    coordinator: Coordinator = app.bot_data["coordinator"]
    await coordinator.stop_monitoring()
    await coordinator.close_providers()
    await close_session()
