"""Tests for the Sampler and the CPU delta engine."""

import threading

import pytest
from fakes import SyntheticSource, ipv4, ipv6

from hostpulse.errors import PartialDataError
from hostpulse.models import Snapshot
from hostpulse.monitor import (
    CpuDeltaEngine,
    CpuMode,
    Sampler,
    compute_utilization,
    select_private_address,
)
from hostpulse.sources import CoreCounters, PsutilSource


class TestCpuUtilization:
    """Tests for per-core percentage derivation."""

    def test_synthetic_counters(self):
        """Test total=1000, idle=700, user=200, sys=100."""
        sampler = Sampler(SyntheticSource(), cpu_mode=CpuMode.CUMULATIVE)

        core = sampler.sample().cpu[0]

        assert core.utilization.user_pct == 20.0
        assert core.utilization.system_pct == 10.0
        assert core.utilization.idle_pct == 70.0
        assert core.utilization.other_pct == 0.0
        assert core.counters.total == 1000

    def test_first_delta_sample_uses_cumulative_counters(self):
        sampler = Sampler(SyntheticSource(), cpu_mode=CpuMode.DELTA)

        core = sampler.sample().cpu[0]

        assert (core.utilization.user_pct, core.utilization.system_pct) == (20.0, 10.0)
        assert core.utilization.idle_pct == 70.0

    def test_unmodeled_states_go_to_other(self):
        """Test extra states are reported instead of silently skewing the sum."""
        window = {"user": 200, "system": 100, "idle": 600, "nice": 50, "iowait": 50}

        util, counters = compute_utilization(window)

        assert util.user_pct == 20.0
        assert util.idle_pct == 60.0
        assert util.other_pct == 10.0
        assert util.user_pct + util.system_pct + util.idle_pct + util.other_pct == pytest.approx(
            100.0, abs=0.1
        )
        assert counters.total == 1000

    def test_three_states_sum_to_hundred(self):
        for user, system, idle in [(1, 1, 1), (123, 456, 789), (5, 0, 995), (333, 333, 334)]:
            util, _ = compute_utilization({"user": user, "system": system, "idle": idle})
            total = util.user_pct + util.system_pct + util.idle_pct
            assert total == pytest.approx(100.0, abs=0.1)

    def test_shares_sum_to_exactly_hundred(self):
        util, _ = compute_utilization({"user": 1, "system": 1, "idle": 1})

        assert sorted([util.user_pct, util.system_pct, util.idle_pct]) == [33.3, 33.3, 33.4]
        assert round(util.user_pct + util.system_pct + util.idle_pct, 1) == 100.0

    def test_zero_total(self):
        util, counters = compute_utilization({"user": 0, "system": 0, "idle": 0})

        assert util.user_pct == util.system_pct == util.idle_pct == 0.0
        assert counters.total == 0

    def test_core_index_is_one_based(self):
        source = SyntheticSource(cores=[{"user": 1, "system": 1, "idle": 8}] * 4)

        cores = Sampler(source).sample().cpu

        assert [core.core_index for core in cores] == [1, 2, 3, 4]
        assert all(core.model == "Synthetic CPU" for core in cores)
        assert all(core.clock_speed_mhz == 2400 for core in cores)


class TestCpuDeltaEngine:
    """Tests for instantaneous utilization between samples."""

    @staticmethod
    def counters(**times) -> list[CoreCounters]:
        return [CoreCounters(model="cpu", speed_mhz=0, times=times)]

    def test_second_window_is_a_delta(self):
        engine = CpuDeltaEngine(CpuMode.DELTA)
        engine.window(self.counters(user=1000, system=1000, idle=8000))

        window = engine.window(self.counters(user=1500, system=1100, idle=8400))

        assert window == [{"user": 500, "system": 100, "idle": 400}]

    def test_delta_reflects_current_load_not_since_boot(self):
        source = SyntheticSource(cores=[{"user": 100, "system": 100, "idle": 9800}])
        sampler = Sampler(source, cpu_mode=CpuMode.DELTA)
        sampler.sample()

        # Fully busy for the last 1000 ms
        source.cores = [{"user": 1100, "system": 100, "idle": 9800}]
        core = sampler.sample().cpu[0]

        assert core.utilization.user_pct == 100.0
        assert core.utilization.idle_pct == 0.0

    def test_cumulative_mode_ignores_baseline(self):
        source = SyntheticSource(cores=[{"user": 100, "system": 100, "idle": 9800}])
        sampler = Sampler(source, cpu_mode=CpuMode.CUMULATIVE)
        sampler.sample()

        source.cores = [{"user": 1100, "system": 100, "idle": 9800}]
        core = sampler.sample().cpu[0]

        assert core.utilization.user_pct == pytest.approx(1100 / 11000 * 100, abs=0.1)

    def test_counter_reset_falls_back_to_cumulative(self):
        engine = CpuDeltaEngine()
        engine.window(self.counters(user=5000, system=5000, idle=5000))

        window = engine.window(self.counters(user=10, system=20, idle=70))

        assert window == [{"user": 10, "system": 20, "idle": 70}]

    def test_empty_first_window_falls_back_to_cumulative(self):
        engine = CpuDeltaEngine()
        engine.window(self.counters(user=10, system=20, idle=70))

        window = engine.window(self.counters(user=10, system=20, idle=70))

        assert window == [{"user": 10, "system": 20, "idle": 70}]

    def test_empty_window_reuses_last_delta(self):
        engine = CpuDeltaEngine(min_window=0.0)
        engine.window(self.counters(user=1000, system=1000, idle=8000))
        engine.window(self.counters(user=1500, system=1100, idle=8400))

        window = engine.window(self.counters(user=1500, system=1100, idle=8400))

        assert window == [{"user": 500, "system": 100, "idle": 400}]

    def test_short_window_reuses_last_delta(self):
        now = [0.0]
        engine = CpuDeltaEngine(min_window=1.0, clock=lambda: now[0])
        engine.window(self.counters(user=1000, system=1000, idle=8000))
        now[0] = 1.0
        engine.window(self.counters(user=1500, system=1100, idle=8400))

        now[0] = 1.01
        window = engine.window(self.counters(user=1501, system=1100, idle=8400))

        assert window == [{"user": 500, "system": 100, "idle": 400}]

    def test_baseline_advances_after_min_window(self):
        now = [0.0]
        engine = CpuDeltaEngine(min_window=1.0, clock=lambda: now[0])
        engine.window(self.counters(user=1000, system=1000, idle=8000))
        now[0] = 1.0
        engine.window(self.counters(user=1500, system=1100, idle=8400))
        now[0] = 1.5
        engine.window(self.counters(user=1600, system=1100, idle=8400))

        now[0] = 2.0
        window = engine.window(self.counters(user=1600, system=1200, idle=9200))

        assert window == [{"user": 100, "system": 100, "idle": 800}]

    def test_several_observers_see_the_same_load(self):
        """Test back-to-back samples from different sessions agree."""
        source = SyntheticSource(cores=[{"user": 100000, "system": 100000, "idle": 9800000}])
        sampler = Sampler(source, cpu_mode=CpuMode.DELTA)
        sampler.sample()

        source.cores = [{"user": 101000, "system": 100000, "idle": 9800000}]
        first = sampler.sample().cpu[0].utilization
        second = sampler.sample().cpu[0].utilization
        third = sampler.sample().cpu[0].utilization

        assert first.user_pct == 100.0
        assert second == first
        assert third == first

    def test_core_count_change_resets_window(self):
        engine = CpuDeltaEngine()
        engine.window(self.counters(user=10, system=20, idle=70))

        two_cores = self.counters(user=20, system=20, idle=80) * 2
        window = engine.window(two_cores)

        assert window == [{"user": 20, "system": 20, "idle": 80}] * 2

    def test_reset(self):
        engine = CpuDeltaEngine()
        engine.window(self.counters(user=10, system=20, idle=70))
        engine.reset()

        window = engine.window(self.counters(user=20, system=20, idle=80))

        assert window == [{"user": 20, "system": 20, "idle": 80}]


class TestSampler:
    """Tests for Snapshot assembly."""

    def test_sample_returns_snapshot(self):
        snapshot = Sampler(SyntheticSource(), clock=lambda: 42.0).sample()

        assert isinstance(snapshot, Snapshot)
        assert snapshot.timestamp == 42.0
        assert snapshot.os.hostname == "testhost"
        assert snapshot.memory.total_bytes == 16 * 1024**3
        assert snapshot.memory.used_pct == 75.0
        assert snapshot.disk.free_pct == 25.0
        assert snapshot.uptime_formatted == "1d 1h 1m 1s"
        assert snapshot.degraded == ()

    def test_disk_path_is_configurable(self):
        source = SyntheticSource()

        Sampler(source, disk_path="/data").sample()

        assert source.disk_paths == ["/data"]

    def test_disk_failure_degrades_only_disk(self):
        """Test a missing filesystem yields sentinels while the rest is produced."""
        snapshot = Sampler(SyntheticSource(failing={"disk"})).sample()

        assert snapshot.degraded == ("disk",)
        assert not snapshot.disk.available
        assert snapshot.disk.to_dict()["total"] == "N/A"
        assert snapshot.disk.to_dict()["usedPercentage"] == "0%"
        assert snapshot.memory.available
        assert len(snapshot.cpu) == 1
        assert snapshot.network.private_address == "192.168.1.10"

    def test_every_subsystem_can_degrade(self):
        source = SyntheticSource(failing={"os", "cpu", "memory", "disk", "network", "uptime"})

        snapshot = Sampler(source).sample()

        assert set(snapshot.degraded) == {"os", "cpu", "memory", "disk", "network", "uptime"}
        assert snapshot.cpu == ()
        assert snapshot.os.platform == "unknown"
        assert snapshot.network.private_address == "Not found"
        assert snapshot.uptime_formatted == "0d 0h 0m 0s"

    def test_strict_sample_raises_partial_data_error(self):
        sampler = Sampler(SyntheticSource(failing={"disk"}))

        with pytest.raises(PartialDataError) as excinfo:
            sampler.sample(strict=True)

        assert excinfo.value.subsystems == ("disk",)
        assert excinfo.value.snapshot is not None
        assert excinfo.value.snapshot.memory.available

    def test_strict_sample_without_failures(self):
        snapshot = Sampler(SyntheticSource()).sample(strict=True)

        assert snapshot.degraded == ()

    def test_interface_table_is_kept(self):
        snapshot = Sampler(SyntheticSource()).sample()

        table = snapshot.to_dict()["network"]["interfaces"]
        assert list(table) == ["lo", "eth0"]
        assert table["eth0"][0]["address"] == "192.168.1.10"
        assert table["lo"][0]["internal"] is True

    def test_concurrent_sampling(self):
        """Test the sampler can be called from several threads at once."""
        sampler = Sampler(SyntheticSource(cores=[{"user": 1, "system": 1, "idle": 8}] * 8))
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                for _ in range(50):
                    assert len(sampler.sample().cpu) == 8
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10.0)

        assert errors == []


class TestPrivateAddress:
    """Tests for private address selection."""

    def test_last_non_internal_ipv4_wins(self):
        table = {
            "lo": [ipv4("127.0.0.1", internal=True)],
            "eth0": [ipv4("10.0.0.5")],
            "wlan0": [ipv6("fe80::2"), ipv4("192.168.0.7")],
            "docker0": [ipv6("fe80::3")],
        }

        assert select_private_address(table) == "192.168.0.7"

    def test_loopback_and_ipv6_only(self):
        table = {"lo": [ipv4("127.0.0.1", internal=True), ipv6("::1", internal=True)]}

        assert select_private_address(table) == "Not found"

    def test_empty_table(self):
        assert select_private_address({}) == "Not found"


class TestPsutilSource:
    """Tests against the real host."""

    def test_real_host_snapshot(self):
        snapshot = Sampler(PsutilSource()).sample()

        assert len(snapshot.cpu) > 0
        assert snapshot.memory.total_bytes > 0
        assert snapshot.uptime_seconds > 0
        for core in snapshot.cpu:
            util = core.utilization
            total = util.user_pct + util.system_pct + util.idle_pct + util.other_pct
            assert total == pytest.approx(100.0, abs=0.5)

    def test_missing_disk_path_degrades(self):
        snapshot = Sampler(PsutilSource(), disk_path="/definitely/not/a/mount").sample()

        assert "disk" in snapshot.degraded
        assert snapshot.disk.to_dict()["free"] == "N/A"

    def test_interfaces_include_loopback(self):
        table = PsutilSource().interfaces()

        internal = [addr for addrs in table.values() for addr in addrs if addr.internal]
        assert internal, "expected a loopback address"
        assert all(addr.family in ("IPv4", "IPv6") for addrs in table.values() for addr in addrs)
