"""Data models for hostpulse."""

import json
from dataclasses import dataclass, field

BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")
NOT_AVAILABLE = "N/A"
NOT_FOUND = "Not found"


def format_bytes(size: float) -> str:
    """Format bytes as the largest unit keeping the value below 1024."""
    unit_index = 0
    while size >= 1024 and unit_index < len(BYTE_UNITS) - 1:
        size = size / 1024
        unit_index += 1
    return f"{size:.2f} {BYTE_UNITS[unit_index]}"


def format_uptime(seconds: float) -> str:
    """Format seconds as days, hours, minutes and seconds (floored)."""
    seconds = max(0.0, seconds)
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{days}d {hours}h {minutes}m {secs}s"


def format_percent(value: float, digits: int = 2) -> str:
    """Format a percentage with a fixed number of decimals."""
    return f"{value:.{digits}f}%"


@dataclass(slots=True, frozen=True)
class OsInfo:
    """Static description of the host operating system."""

    platform: str
    kernel_type: str
    release_version: str
    architecture: str
    hostname: str

    @classmethod
    def unknown(cls) -> "OsInfo":
        return cls("unknown", "unknown", "unknown", "unknown", "unknown")


@dataclass(slots=True, frozen=True)
class CpuCounters:
    """Time-in-state counters (milliseconds) over the sampled window."""

    user: float
    system: float
    idle: float
    total: float


@dataclass(slots=True, frozen=True)
class CpuUtilization:
    """Per-state share of a core's time, each 0.0 - 100.0."""

    user_pct: float
    system_pct: float
    idle_pct: float
    other_pct: float = 0.0


@dataclass(slots=True, frozen=True)
class CoreMetric:
    """Utilization of a single logical core."""

    core_index: int  # 1-based
    model: str
    clock_speed_mhz: int
    utilization: CpuUtilization
    counters: CpuCounters

    def to_dict(self) -> dict:
        util = self.utilization
        return {
            "core": self.core_index,
            "model": self.model,
            "speed": f"{self.clock_speed_mhz} MHz",
            "times": {
                "user": format_percent(util.user_pct, 1),
                "system": format_percent(util.system_pct, 1),
                "idle": format_percent(util.idle_pct, 1),
                "other": format_percent(util.other_pct, 1),
                "rawTotal": self.counters.total,
                "rawUser": self.counters.user,
                "rawSystem": self.counters.system,
                "rawIdle": self.counters.idle,
            },
        }


@dataclass(slots=True, frozen=True)
class UsageMetric:
    """Capacity usage of memory or a filesystem."""

    total_bytes: int
    free_bytes: int
    used_bytes: int
    used_pct: float
    free_pct: float
    available: bool = True

    @classmethod
    def from_counters(cls, total: int, free: int) -> "UsageMetric":
        """Build a metric from raw totals, clamping free into [0, total]."""
        total = max(0, int(total))
        free = min(max(0, int(free)), total)
        used = total - free
        if total == 0:
            return cls(total, free, used, 0.0, 0.0)
        return cls(
            total_bytes=total,
            free_bytes=free,
            used_bytes=used,
            used_pct=round(used / total * 100, 2),
            free_pct=round(free / total * 100, 2),
        )

    @classmethod
    def unavailable(cls) -> "UsageMetric":
        return cls(0, 0, 0, 0.0, 0.0, available=False)

    def to_dict(self) -> dict:
        if not self.available:
            return {
                "total": NOT_AVAILABLE,
                "free": NOT_AVAILABLE,
                "used": NOT_AVAILABLE,
                "usedPercentage": "0%",
                "freePercentage": "0%",
                "totalRaw": 0,
                "freeRaw": 0,
                "usedRaw": 0,
            }
        return {
            "total": format_bytes(self.total_bytes),
            "free": format_bytes(self.free_bytes),
            "used": format_bytes(self.used_bytes),
            "usedPercentage": format_percent(self.used_pct),
            "freePercentage": format_percent(self.free_pct),
            "totalRaw": self.total_bytes,
            "freeRaw": self.free_bytes,
            "usedRaw": self.used_bytes,
        }


@dataclass(slots=True, frozen=True)
class InterfaceAddress:
    """One address bound to a network interface."""

    address: str
    netmask: str | None
    family: str  # 'IPv4' or 'IPv6'
    mac: str
    internal: bool
    cidr: str | None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "netmask": self.netmask,
            "family": self.family,
            "mac": self.mac,
            "internal": self.internal,
            "cidr": self.cidr,
        }


@dataclass(slots=True, frozen=True)
class NetworkInfo:
    """Host addressing summary."""

    private_address: str
    hostname: str
    interface_table: dict[str, tuple[InterfaceAddress, ...]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "privateIP": self.private_address,
            "hostname": self.hostname,
            "interfaces": {
                name: [addr.to_dict() for addr in addresses]
                for name, addresses in self.interface_table.items()
            },
        }


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable telemetry sample produced once per tick."""

    timestamp: float
    os: OsInfo
    cpu: tuple[CoreMetric, ...]
    memory: UsageMetric
    disk: UsageMetric
    network: NetworkInfo
    uptime_seconds: float
    degraded: tuple[str, ...] = ()

    @property
    def uptime_formatted(self) -> str:
        return format_uptime(self.uptime_seconds)

    def to_dict(self) -> dict:
        """Serialize to the JSON document pushed to observers."""
        return {
            "timestamp": self.timestamp,
            "os": {
                "platform": self.os.platform,
                "type": self.os.kernel_type,
                "release": self.os.release_version,
                "arch": self.os.architecture,
                "hostname": self.os.hostname,
            },
            "cpu": [core.to_dict() for core in self.cpu],
            "memory": self.memory.to_dict(),
            "disk": self.disk.to_dict(),
            "network": self.network.to_dict(),
            "uptime": self.uptime_formatted,
            "degraded": list(self.degraded),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
