"""Error taxonomy for the coordination layer.

Provider-level failures (``ProviderUnavailable``) are absorbed wherever the
coordinator fans out.  Lookup and booking failures are surfaced to the caller
with the plan and segment ids needed to decide between retrying and
re-planning.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from transitmesh.models import BookingInfo


class TransitMeshError(Exception):
    """Base class for every error raised by the coordination layer."""


class NoProvidersAvailable(TransitMeshError):
    """No registered provider declares the capability a call needs."""

    def __init__(self, capability: str) -> None:
        super().__init__(f"no provider declares '{capability}'")
        self.capability = capability


class ProviderUnavailable(TransitMeshError):
    """A single provider failed to answer (network, upstream API, ...)."""

    def __init__(self, provider_id: str, reason: str) -> None:
        super().__init__(f"provider '{provider_id}' unavailable: {reason}")
        self.provider_id = provider_id
        self.reason = reason


class JourneyNotFound(TransitMeshError):
    """The plan id is not (or no longer) in the tracked-journeys table."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"journey '{plan_id}' is not tracked")
        self.plan_id = plan_id


class BookingUnavailable(TransitMeshError):
    """A booking attempt was rejected.

    ``confirmed`` holds the bookings that had already succeeded within the
    same ``book_journey`` call; they are not rolled back.
    """

    def __init__(
        self,
        message: str,
        *,
        plan_id: str | None = None,
        segment_id: str | None = None,
        confirmed: Iterable[BookingInfo] = (),
    ) -> None:
        super().__init__(message)
        self.plan_id = plan_id
        self.segment_id = segment_id
        self.confirmed = list(confirmed)


class AssemblyInvariantViolation(TransitMeshError):
    """A plan was about to be built without segments."""
