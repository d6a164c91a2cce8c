from __future__ import annotations

import logging
from datetime import timedelta

from transitmesh.config import Settings
from transitmesh.services.assembler import PlanAssembler
from transitmesh.services.base import BaseProvider
from transitmesh.services.bike_sharing import BikeSharingProvider
from transitmesh.services.coordinator import Coordinator
from transitmesh.services.public_transport import PublicTransportProvider
from transitmesh.services.ranker import PlanRanker
from transitmesh.services.ride_hailing import RideHailingProvider
from transitmesh.services.walking import WalkingProvider

logger = logging.getLogger(__name__)


def default_providers(settings: Settings) -> list[BaseProvider]:
    providers: list[BaseProvider] = []
    if settings.enable_public_transport:
        providers.append(PublicTransportProvider(api_base=settings.vbb_api_base))
    if settings.enable_ride_hailing:
        providers.append(RideHailingProvider())
    if settings.enable_bike_sharing:
        providers.append(BikeSharingProvider())
    if settings.enable_walking:
        providers.append(WalkingProvider())
    return providers


def build_coordinator(settings: Settings) -> Coordinator:
    coordinator = Coordinator(
        assembler=PlanAssembler(
            transfer_penalty_minutes=settings.transfer_penalty_minutes,
            validity=timedelta(minutes=settings.plan_validity_minutes),
        ),
        ranker=PlanRanker(max_results=settings.max_plans),
        provider_timeout=settings.provider_timeout_seconds,
        monitor_interval=settings.monitor_interval_seconds,
    )
    for provider in default_providers(settings):
        coordinator.register_provider(provider)
    logger.info("Providers: %s", ", ".join(p.provider_id for p in coordinator.registry.all()) or "none")
    return coordinator
