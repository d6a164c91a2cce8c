from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import ContextTypes

from transitmesh.errors import BookingUnavailable, JourneyNotFound, NoProvidersAvailable
from transitmesh.models import LocationPoint, UserPreferences
from transitmesh.services.coordinator import Coordinator
from transitmesh.services.formatter import (
    escape,
    format_bookings,
    format_plans,
    format_status,
    split_message,
)

logger = logging.getLogger(__name__)

PLAN_USAGE = (
    "Usage: <code>/plan &lt;lat,lon&gt; &lt;lat,lon&gt; "
    "[fast|cheap|comfy|eco|access|live] [max=&lt;cost&gt;]</code>"
)

FLAGS = {
    "fast": "prioritize_speed",
    "cheap": "prioritize_cost",
    "comfy": "prioritize_comfort",
    "eco": "prioritize_environment",
    "live": "real_time_updates_required",
}


# ── Argument parsing ─────────────────────────────────────────────────────────

def parse_location(raw: str) -> LocationPoint:
    """Parse ``"52.5219,13.4132"`` into a point; raises ValueError on junk."""
    parts = raw.split(",")
    if len(parts) != 2:
        raise ValueError(f"'{raw}' is not a lat,lon pair")
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValueError(f"'{raw}' is not a lat,lon pair") from None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise ValueError(f"'{raw}' is out of range")
    return LocationPoint(lat, lon, f"{lat:.4f},{lon:.4f}")


def parse_preferences(args: list[str]) -> UserPreferences:
    prefs = UserPreferences()
    for arg in args:
        word = arg.lower()
        if word in FLAGS:
            setattr(prefs, FLAGS[word], True)
        elif word == "access":
            prefs.accessibility_needs = ["wheelchair"]
        elif word.startswith("max="):
            try:
                prefs.max_cost = float(word[4:])
            except ValueError:
                raise ValueError(f"'{arg}' is not a valid budget") from None
            if prefs.max_cost < 0:
                raise ValueError(f"'{arg}' is not a valid budget")
        else:
            raise ValueError(f"unknown option '{arg}'")
    return prefs


# ── Commands ─────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "🧭 <b>TransitMesh</b>\n\n"
        "Door-to-door journeys combining:\n"
        "  🚇 Public transport (VBB)\n"
        "  🚗 Ride-hailing\n"
        "  🚲 Bike sharing\n"
        "  🚶 Walking\n\n"
        "Booked and tracked plans get live delay and disruption alerts.\n"
        "Send /help for commands.",
        parse_mode="HTML",
    )


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "🧭 <b>TransitMesh Commands</b>\n\n"
        "/plan &lt;from&gt; &lt;to&gt; [options] — find journeys\n"
        "  from/to as <code>lat,lon</code>\n"
        "  options: fast, cheap, comfy, eco, access, live, max=&lt;€&gt;\n"
        "/book &lt;id&gt; — book every segment that needs it\n"
        "/replan &lt;id&gt; — plan the same trip again\n"
        "/cancel &lt;id&gt; — stop alerts for a plan\n"
        "/status — providers and tracked journeys",
        parse_mode="HTML",
    )


async def cmd_plan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    coordinator = _coordinator(context)
    if coordinator is None:
        await update.message.reply_text("⚠️ Bot not ready yet.")
        return
    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text(PLAN_USAGE, parse_mode="HTML")
        return
    try:
        origin = parse_location(args[0])
        destination = parse_location(args[1])
        prefs = parse_preferences(args[2:])
    except ValueError as exc:
        await update.message.reply_text(f"❌ {escape(exc)}\n{PLAN_USAGE}", parse_mode="HTML")
        return

    await update.message.reply_text("⏳ Asking providers…")
    try:
        plans = await coordinator.plan_journey(origin, destination, prefs)
    except NoProvidersAvailable:
        await update.message.reply_text("⚠️ No journey planners are enabled.")
        return
    except Exception:
        logger.exception("plan_journey failed")
        await update.message.reply_text("❌ Planning failed. Check logs.")
        return
    await _reply_chunks(update, format_plans(plans, origin.name, destination.name))


async def cmd_replan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    coordinator = _coordinator(context)
    plan_id = _plan_id_arg(context)
    if coordinator is None or plan_id is None:
        await update.message.reply_text("Usage: /replan &lt;id&gt;", parse_mode="HTML")
        return
    journey = coordinator.get_journey_status(plan_id)
    try:
        plans = await coordinator.replan_journey(plan_id)
    except JourneyNotFound:
        await _reply_unknown(update, plan_id)
        return
    except Exception:
        logger.exception("replan_journey failed for %s", plan_id)
        await update.message.reply_text("❌ Re-planning failed. Check logs.")
        return
    await _reply_chunks(update, format_plans(plans, journey.origin.name, journey.destination.name))


async def cmd_book(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    coordinator = _coordinator(context)
    plan_id = _plan_id_arg(context)
    if coordinator is None or plan_id is None:
        await update.message.reply_text("Usage: /book &lt;id&gt;", parse_mode="HTML")
        return
    try:
        bookings = await coordinator.book_journey(plan_id)
    except JourneyNotFound:
        await _reply_unknown(update, plan_id)
        return
    except BookingUnavailable as exc:
        text = f"❌ Booking failed: {escape(exc)}"
        if exc.confirmed:
            text += "\n\nAlready confirmed (not cancelled):\n" + format_bookings(plan_id, exc.confirmed)
        await _reply_chunks(update, text)
        return
    await _reply_chunks(update, format_bookings(plan_id, bookings))


async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    coordinator = _coordinator(context)
    plan_id = _plan_id_arg(context)
    if coordinator is None or plan_id is None:
        await update.message.reply_text("Usage: /cancel &lt;id&gt;", parse_mode="HTML")
        return
    if coordinator.get_journey_status(plan_id) is None:
        await _reply_unknown(update, plan_id)
        return
    coordinator.cancel_journey_monitoring(plan_id)
    await update.message.reply_text(
        f"🛑 Alerts stopped for <code>{escape(plan_id)}</code>", parse_mode="HTML",
    )


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    coordinator = _coordinator(context)
    if coordinator is None:
        await update.message.reply_text("⚠️ Bot not ready yet.")
        return
    providers = [(p.provider_id, p.name, p.is_active) for p in coordinator.registry.all()]
    await _reply_chunks(update, format_status(providers, coordinator.tracked_journeys()))


# ── Helpers ──────────────────────────────────────────────────────────────────

def _coordinator(context: ContextTypes.DEFAULT_TYPE) -> Coordinator | None:
    return context.bot_data.get("coordinator")


def _plan_id_arg(context: ContextTypes.DEFAULT_TYPE) -> str | None:
    args = context.args or []
    return args[0] if len(args) == 1 else None


async def _reply_unknown(update: Update, plan_id: str) -> None:
    await update.message.reply_text(
        f"❓ No tracked plan <code>{escape(plan_id)}</code>. It may have expired.",
        parse_mode="HTML",
    )


async def _reply_chunks(update: Update, text: str) -> None:
    for chunk in split_message(text):
        await update.message.reply_text(chunk, parse_mode="HTML")
