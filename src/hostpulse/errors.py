"""Exception types for hostpulse."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hostpulse.models import Snapshot


class HostPulseError(Exception):
    """Base class for all hostpulse errors."""


class PartialDataError(HostPulseError):
    """
    One or more telemetry subsystems could not be read.

    Raised by telemetry sources for a single subsystem, and by
    ``Sampler.sample(strict=True)`` with the degraded snapshot attached.
    """

    def __init__(
        self,
        subsystems: str | tuple[str, ...],
        cause: BaseException | None = None,
        snapshot: Snapshot | None = None,
    ) -> None:
        if isinstance(subsystems, str):
            subsystems = (subsystems,)
        self.subsystems = subsystems
        self.cause = cause
        self.snapshot = snapshot
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Telemetry unavailable for {', '.join(subsystems)}{detail}")


class TransportError(HostPulseError):
    """The push channel to an observer failed."""


class DeliveryError(HostPulseError):
    """A snapshot could not be delivered to an observer session."""

    def __init__(self, session_id: str, cause: BaseException | None = None) -> None:
        self.session_id = session_id
        self.cause = cause
        super().__init__(f"Delivery to session {session_id} failed: {cause}")


class ExecError(HostPulseError):
    """A privileged control action failed."""

    def __init__(self, message: str, cause: BaseException | str | None = None) -> None:
        self.cause = cause
        self.message = f"{message}: {cause}" if cause else message
        super().__init__(self.message)
