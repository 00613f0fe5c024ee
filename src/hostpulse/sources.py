"""Telemetry sources: where the Sampler reads raw OS counters from."""

import ipaddress
import platform
import socket
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

import psutil

from hostpulse.errors import PartialDataError
from hostpulse.models import InterfaceAddress, OsInfo

# Guest time is already accounted for inside user/nice on Linux
GUEST_STATES = frozenset({"guest", "guest_nice"})
EMPTY_MAC = "00:00:00:00:00:00"


@dataclass(slots=True, frozen=True)
class CoreCounters:
    """Raw cumulative time-in-state counters for one core, in milliseconds."""

    model: str
    speed_mhz: int
    times: Mapping[str, float]  # must contain 'user', 'system' and 'idle'


class TelemetrySource(ABC):
    """
    Capability for reading raw host counters.

    Implementations raise PartialDataError when a subsystem cannot be read;
    the Sampler degrades only that subsystem.
    """

    @abstractmethod
    def os_info(self) -> OsInfo: ...

    @abstractmethod
    def hostname(self) -> str: ...

    @abstractmethod
    def cpu_cores(self) -> list[CoreCounters]: ...

    @abstractmethod
    def memory(self) -> tuple[int, int]:
        """Return (total, free) bytes of physical memory."""

    @abstractmethod
    def disk(self, path: str) -> tuple[int, int]:
        """Return (total, free) bytes of the filesystem holding path."""

    @abstractmethod
    def interfaces(self) -> dict[str, list[InterfaceAddress]]:
        """Return addresses per interface, in the host's enumeration order."""

    @abstractmethod
    def uptime(self) -> float:
        """Return seconds since boot."""


def _read_cpu_model() -> str:
    """Look up the CPU model name using the platform's native mechanism."""
    system = platform.system()
    if system == "Linux":
        try:
            with open("/proc/cpuinfo", encoding="utf-8") as cpuinfo:
                for line in cpuinfo:
                    key, _, value = line.partition(":")
                    if key.strip() in ("model name", "Hardware", "Processor"):
                        return value.strip()
        except OSError:
            pass
    elif system == "Darwin":
        try:
            result = subprocess.run(
                ["sysctl", "-n", "machdep.cpu.brand_string"],
                capture_output=True,
                text=True,
                check=True,
            )
            if result.stdout.strip():
                return result.stdout.strip()
        except (OSError, subprocess.CalledProcessError):
            pass
    return platform.processor() or "unknown"


def _prefix_length(netmask: str) -> int:
    return bin(int(ipaddress.ip_address(netmask))).count("1")


def _to_interface_address(addr, mac: str) -> InterfaceAddress:
    family = "IPv4" if addr.family == socket.AF_INET else "IPv6"
    # Link-local IPv6 addresses carry a '%scope' suffix
    ip = addr.address.split("%", 1)[0]
    cidr = None
    if addr.netmask:
        try:
            cidr = f"{ip}/{_prefix_length(addr.netmask)}"
        except ValueError:
            cidr = None
    try:
        internal = ipaddress.ip_address(ip).is_loopback
    except ValueError:
        internal = False
    return InterfaceAddress(
        address=addr.address,
        netmask=addr.netmask,
        family=family,
        mac=mac,
        internal=internal,
        cidr=cidr,
    )


class PsutilSource(TelemetrySource):
    """Reads counters through psutil, which abstracts over Linux, macOS and Windows."""

    def __init__(self) -> None:
        self._model = _read_cpu_model()

    def os_info(self) -> OsInfo:
        return OsInfo(
            platform=sys.platform,
            kernel_type=platform.system(),
            release_version=platform.release(),
            architecture=platform.machine(),
            hostname=self.hostname(),
        )

    def hostname(self) -> str:
        return socket.gethostname()

    def cpu_cores(self) -> list[CoreCounters]:
        try:
            per_core = psutil.cpu_times(percpu=True)
        except (OSError, psutil.Error) as exc:
            raise PartialDataError("cpu", exc) from exc

        speeds = self._frequencies(len(per_core))
        return [
            CoreCounters(
                model=self._model,
                speed_mhz=speeds[index],
                times={
                    state: value * 1000
                    for state, value in times._asdict().items()
                    if state not in GUEST_STATES
                },
            )
            for index, times in enumerate(per_core)
        ]

    def _frequencies(self, count: int) -> list[int]:
        """Current clock per core in MHz, 0 where the platform cannot tell."""
        cpu_freq = getattr(psutil, "cpu_freq", None)
        freqs = []
        if cpu_freq is not None:
            try:
                freqs = cpu_freq(percpu=True) or []
            except (OSError, NotImplementedError):
                freqs = []
        if len(freqs) == count:
            return [int(freq.current) for freq in freqs]
        if freqs:
            return [int(freqs[0].current)] * count
        return [0] * count

    def memory(self) -> tuple[int, int]:
        try:
            mem = psutil.virtual_memory()
        except (OSError, psutil.Error) as exc:
            raise PartialDataError("memory", exc) from exc
        return mem.total, mem.available

    def disk(self, path: str) -> tuple[int, int]:
        try:
            usage = psutil.disk_usage(path)
        except (OSError, psutil.Error) as exc:
            raise PartialDataError("disk", exc) from exc
        return usage.total, usage.free

    def interfaces(self) -> dict[str, list[InterfaceAddress]]:
        try:
            raw = psutil.net_if_addrs()
        except (OSError, psutil.Error) as exc:
            raise PartialDataError("network", exc) from exc

        table: dict[str, list[InterfaceAddress]] = {}
        for name, addrs in raw.items():
            mac = next(
                (addr.address for addr in addrs if addr.family == psutil.AF_LINK),
                EMPTY_MAC,
            )
            table[name] = [
                _to_interface_address(addr, mac)
                for addr in addrs
                if addr.family in (socket.AF_INET, socket.AF_INET6)
            ]
        return table

    def uptime(self) -> float:
        try:
            boot_time = psutil.boot_time()
        except (OSError, psutil.Error) as exc:
            raise PartialDataError("uptime", exc) from exc
        return time.time() - boot_time
