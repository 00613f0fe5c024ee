"""Telemetry sampling engine for hostpulse."""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import TypeVar

from hostpulse.errors import PartialDataError
from hostpulse.models import (
    NOT_FOUND,
    CoreMetric,
    CpuCounters,
    CpuUtilization,
    InterfaceAddress,
    NetworkInfo,
    OsInfo,
    Snapshot,
    UsageMetric,
)
from hostpulse.sources import CoreCounters, PsutilSource, TelemetrySource

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Shortest CPU window worth computing; callers arriving sooner reuse the last one
DEFAULT_MIN_WINDOW = 0.5


class CpuMode(Enum):
    """How per-core utilization is derived from time-in-state counters."""

    DELTA = "delta"  # window since the previous sample
    CUMULATIVE = "cumulative"  # since boot


class CpuDeltaEngine:
    """
    Turns cumulative CPU counters into the window a percentage is computed over.

    The baseline only advances once at least ``min_window`` seconds have
    passed since it was taken. Callers arriving sooner, e.g. several observers
    ticking within the same second, share the last completed window instead
    of diffing against a baseline a few milliseconds old. All state is read
    and swapped under one lock, so concurrent callers each get a consistent
    window.
    """

    def __init__(
        self,
        mode: CpuMode = CpuMode.DELTA,
        *,
        min_window: float = DEFAULT_MIN_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mode = mode
        self._min_window = min_window
        self._clock = clock
        self._lock = threading.Lock()
        self._baseline: list[dict[str, float]] | None = None
        self._baseline_at = 0.0
        self._last: list[dict[str, float]] | None = None

    @property
    def mode(self) -> CpuMode:
        return self._mode

    def reset(self) -> None:
        """Forget the baseline; the next window is cumulative again."""
        with self._lock:
            self._baseline = None
            self._last = None

    def window(self, cores: list[CoreCounters]) -> list[dict[str, float]]:
        """Return the counters each core's percentages should be computed from."""
        current = [dict(core.times) for core in cores]
        if self._mode is CpuMode.CUMULATIVE:
            return current

        now = self._clock()
        with self._lock:
            baseline, last = self._baseline, self._last

            # First sample or hotplugged cores: no comparable baseline
            if baseline is None or len(baseline) != len(current):
                self._start(current, now)
                return current

            if last is not None and now - self._baseline_at < self._min_window:
                return last

            deltas = [self._diff(before, after) for before, after in zip(baseline, current)]
            if any(delta is None for delta in deltas):
                logger.debug("CPU counters went backwards; restarting delta baseline")
                self._start(current, now)
                return current

            # Counters have not moved since the baseline
            if any(sum(delta.values()) <= 0 for delta in deltas):
                return last if last is not None else current

            self._baseline, self._baseline_at, self._last = current, now, deltas
            return deltas

    def _start(self, current: list[dict[str, float]], now: float) -> None:
        self._baseline, self._baseline_at, self._last = current, now, None

    @staticmethod
    def _diff(before: Mapping[str, float], after: dict[str, float]) -> dict[str, float] | None:
        delta = {state: value - before.get(state, 0.0) for state, value in after.items()}
        if any(value < 0 for value in delta.values()):
            return None
        return delta


def _round_shares(values: list[float], total: float) -> list[float]:
    """Percentages at one decimal that add up to exactly 100 (largest remainder)."""
    tenths = [value / total * 1000 for value in values]
    floors = [int(share) for share in tenths]
    missing = 1000 - sum(floors)
    by_remainder = sorted(range(len(values)), key=lambda i: tenths[i] - floors[i], reverse=True)
    for i in by_remainder[:missing]:
        floors[i] += 1
    return [share / 10 for share in floors]


def compute_utilization(window: Mapping[str, float]) -> tuple[CpuUtilization, CpuCounters]:
    """Percentage of each state over the sum of all state counters."""
    total = sum(window.values())
    user = window.get("user", 0.0)
    system = window.get("system", 0.0)
    idle = window.get("idle", 0.0)
    other = max(0.0, total - user - system - idle)

    counters = CpuCounters(
        user=round(user),
        system=round(system),
        idle=round(idle),
        total=round(total),
    )
    if total <= 0:
        return CpuUtilization(0.0, 0.0, 0.0, 0.0), counters

    user_pct, system_pct, idle_pct, other_pct = _round_shares(
        [user, system, idle, other], user + system + idle + other
    )
    return (
        CpuUtilization(
            user_pct=user_pct,
            system_pct=system_pct,
            idle_pct=idle_pct,
            other_pct=other_pct,
        ),
        counters,
    )


def select_private_address(table: Mapping[str, list[InterfaceAddress]]) -> str:
    """Return the last non-internal IPv4 address in enumeration order."""
    private = NOT_FOUND
    for addresses in table.values():
        for addr in addresses:
            if addr.family == "IPv4" and not addr.internal:
                private = addr.address
    return private


class Sampler:
    """
    Produces one Snapshot per call from a TelemetrySource.

    Safe to call from several threads at once; the only shared state is the
    CPU delta baseline.
    """

    def __init__(
        self,
        source: TelemetrySource | None = None,
        *,
        disk_path: str = "/",
        cpu_mode: CpuMode = CpuMode.DELTA,
        min_window: float = DEFAULT_MIN_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source if source is not None else PsutilSource()
        self._disk_path = disk_path
        self._delta = CpuDeltaEngine(cpu_mode, min_window=min_window)
        self._clock = clock

    @property
    def cpu_mode(self) -> CpuMode:
        return self._delta.mode

    def sample(self, strict: bool = False) -> Snapshot:
        """
        Collect a snapshot of the current host state.

        Subsystems that fail are replaced with sentinel values and listed in
        ``Snapshot.degraded``. With strict=True a PartialDataError carrying the
        degraded snapshot is raised instead of returning it.
        """
        degraded: list[str] = []

        os_info = self._guard("os", self._source.os_info, OsInfo.unknown, degraded)
        cpu = self._guard("cpu", self._collect_cpu, tuple, degraded)
        memory = self._guard("memory", self._collect_memory, UsageMetric.unavailable, degraded)
        disk = self._guard("disk", self._collect_disk, UsageMetric.unavailable, degraded)
        network = self._guard(
            "network",
            self._collect_network,
            lambda: NetworkInfo(NOT_FOUND, os_info.hostname),
            degraded,
        )
        uptime = self._guard("uptime", self._source.uptime, float, degraded)

        snapshot = Snapshot(
            timestamp=self._clock(),
            os=os_info,
            cpu=cpu,
            memory=memory,
            disk=disk,
            network=network,
            uptime_seconds=uptime,
            degraded=tuple(degraded),
        )
        if strict and degraded:
            raise PartialDataError(tuple(degraded), snapshot=snapshot)
        return snapshot

    def _guard(
        self,
        subsystem: str,
        collect: Callable[[], T],
        fallback: Callable[[], T],
        degraded: list[str],
    ) -> T:
        try:
            return collect()
        except PartialDataError as exc:
            logger.warning("Telemetry degraded for %s: %s", subsystem, exc.cause or exc)
            degraded.append(subsystem)
            return fallback()

    def _collect_cpu(self) -> tuple[CoreMetric, ...]:
        cores = self._source.cpu_cores()
        windows = self._delta.window(cores)

        metrics = []
        for index, (core, window) in enumerate(zip(cores, windows), start=1):
            utilization, counters = compute_utilization(window)
            metrics.append(
                CoreMetric(
                    core_index=index,
                    model=core.model,
                    clock_speed_mhz=core.speed_mhz,
                    utilization=utilization,
                    counters=counters,
                )
            )
        return tuple(metrics)

    def _collect_memory(self) -> UsageMetric:
        total, free = self._source.memory()
        return UsageMetric.from_counters(total, free)

    def _collect_disk(self) -> UsageMetric:
        total, free = self._source.disk(self._disk_path)
        return UsageMetric.from_counters(total, free)

    def _collect_network(self) -> NetworkInfo:
        table = self._source.interfaces()
        return NetworkInfo(
            private_address=select_private_address(table),
            hostname=self._source.hostname(),
            interface_table={name: tuple(addrs) for name, addrs in table.items()},
        )
