from __future__ import annotations

import html

from transitmesh.models import (
    AlternativesFound,
    BookingInfo,
    JourneyPlan,
    JourneySegment,
    JourneyUpdate,
    ModeCategory,
    Severity,
    TrackedJourney,
)

NO_PLANS = "⚠️ No journey options match your preferences."

MODE_EMOJI = {
    ModeCategory.BUS: "🚌",
    ModeCategory.METRO: "🚇",
    ModeCategory.TRAM: "🚊",
    ModeCategory.TRAIN: "🚆",
    ModeCategory.FERRY: "⛴",
    ModeCategory.RIDEHAIL: "🚗",
    ModeCategory.TAXI: "🚕",
    ModeCategory.BIKESHARE: "🚲",
    ModeCategory.SCOOTER: "🛴",
    ModeCategory.WALKING: "🚶",
}

SEVERITY_EMOJI = {
    Severity.LOW: "🟢",
    Severity.MEDIUM: "🟡",
    Severity.HIGH: "🟠",
    Severity.CRITICAL: "🔴",
}


def escape(value: object) -> str:
    """HTML-escape a dynamic value before embedding in a Telegram HTML message."""
    return html.escape(str(value))


def split_message(text: str, limit: int = 4_000) -> list[str]:
    """Split a long message into Telegram-safe chunks, cutting at newlines."""
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut == -1:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text or not chunks:
        chunks.append(text)
    return chunks


def format_plans(plans: list[JourneyPlan], origin: str, destination: str) -> str:
    header = f"🧭 <b>{escape(origin)} → {escape(destination)}</b>"
    if not plans:
        return f"{header}\n\n{NO_PLANS}"
    lines = [header, ""]
    for rank, plan in enumerate(plans, start=1):
        lines.append(_fmt_plan(rank, plan))
    lines.append("Book with /book &lt;id&gt;, stop alerts with /cancel &lt;id&gt;")
    return "\n".join(lines)


def _fmt_plan(rank: int, plan: JourneyPlan) -> str:
    modes = " + ".join(_fmt_mode(s) for s in plan.segments)
    lines = [
        f"<b>{rank}. {modes}</b>  ({plan.match_score:.0%} match)",
        f"  ⏱ {plan.total_duration:.0f} min · 💶 €{plan.total_cost:.2f}"
        f" · 🌱 {plan.total_emissions / 1000:.2f} kg CO₂",
        f"  ✅ reliability {plan.reliability:.0%} · comfort {plan.comfort:.1f}/10"
        f" · access {plan.accessibility:.0f}/10",
    ]
    for segment in plan.segments:
        lines.append(f"  ▸ {_fmt_segment(segment)}")
    lines.append(f"  🆔 <code>{escape(plan.id)}</code>")
    lines.append("")
    return "\n".join(lines)


def _fmt_mode(segment: JourneySegment) -> str:
    return f"{MODE_EMOJI.get(segment.mode.category, '•')} {escape(segment.mode.name)}"


def _fmt_segment(segment: JourneySegment) -> str:
    booking = " · booking needed" if segment.requires_booking else ""
    return (
        f"{segment.departure_time.strftime('%H:%M')}–{segment.arrival_time.strftime('%H:%M')} "
        f"{escape(segment.mode.name)}, {segment.distance / 1000:.1f} km{booking}"
    )


def format_bookings(plan_id: str, bookings: list[BookingInfo]) -> str:
    if not bookings:
        return f"✅ <b>{escape(plan_id)}</b>: nothing to book, just go."
    lines = [f"✅ <b>Booked {escape(plan_id)}</b>"]
    for b in bookings:
        ref = f" <code>{escape(b.reference)}</code>" if b.reference else ""
        lines.append(f"  ▸ {escape(b.provider)}{ref} · pickup in ~{b.estimated_wait_minutes:.0f} min")
        if b.cancellation_policy:
            lines.append(f"    <i>{escape(b.cancellation_policy)}</i>")
    return "\n".join(lines)


def format_journey_update(event: JourneyUpdate) -> str:
    u = event.update
    delay = f" (+{u.estimated_delay:.0f} min)" if u.estimated_delay else ""
    return (
        f"{SEVERITY_EMOJI.get(u.severity, '⚪')} <b>{escape(u.kind.value.replace('_', ' ').title())}</b>"
        f" on <code>{escape(event.plan_id)}</code>{delay}\n"
        f"  {escape(u.message)}"
    )


def format_alternatives(event: AlternativesFound) -> str:
    if not event.alternatives:
        return (
            f"🔁 <b>{escape(event.provider_id)}</b> has no alternatives for "
            f"<code>{escape(event.original_segment_id)}</code>"
        )
    lines = [
        f"🔁 <b>Alternatives from {escape(event.provider_id)}</b>"
        f" for <code>{escape(event.original_segment_id)}</code>:",
    ]
    for s in event.alternatives[:5]:
        lines.append(
            f"  ▸ {_fmt_mode(s)} · {s.duration:.0f} min · €{s.cost:.2f}"
        )
    lines.append("Use /replan &lt;id&gt; for a fresh set of plans.")
    return "\n".join(lines)


def format_status(providers: list[tuple[str, str, bool]], journeys: list[TrackedJourney]) -> str:
    lines = ["📡 <b>Providers</b>"]
    if not providers:
        lines.append("  none registered")
    for provider_id, name, active in providers:
        lines.append(f"  {'✅' if active else '⚠️'} {escape(name)} (<code>{escape(provider_id)}</code>)")
    lines.append("")
    lines.append(f"🗺 <b>Tracked journeys:</b> {len(journeys)}")
    for j in journeys[:10]:
        lines.append(
            f"  ▸ <code>{escape(j.plan_id)}</code> {j.state.value}"
            f" · until {j.plan.valid_until.strftime('%H:%M')}"
        )
    if len(journeys) > 10:
        lines.append(f"  <i>… +{len(journeys) - 10} more</i>")
    return "\n".join(lines)
