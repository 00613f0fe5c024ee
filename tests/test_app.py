"""Tests for the hostpulse terminal dashboard."""

import pytest
from fakes import ManualTicker, SyntheticSource

from hostpulse.app import CpuPanel, HostPanel, PulseApp, parse_percent, render_bar
from hostpulse.monitor import Sampler
from hostpulse.sessions import SessionManager


def make_app() -> tuple[PulseApp, SessionManager, ManualTicker]:
    ticker = ManualTicker()
    manager = SessionManager(Sampler(SyntheticSource()), sleep=ticker.sleep, clock=lambda: 0.0)
    return PulseApp(manager), manager, ticker


def test_parse_percent():
    assert parse_percent("42.5%") == 42.5
    assert parse_percent("0%") == 0.0
    assert parse_percent("N/A") == 0.0


def test_render_bar_is_fixed_width():
    assert render_bar(0.0, "green").count("░") == 20
    assert render_bar(50.0, "green").count("█") == 10
    assert render_bar(250.0, "green").count("█") == 20


@pytest.mark.asyncio
async def test_app_creation():
    app, _, _ = make_app()

    assert app.title == "hostpulse"
    assert app.sub_title == "Live Host Telemetry"


@pytest.mark.asyncio
async def test_app_attaches_on_mount():
    app, manager, _ = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()

        assert app.session_id is not None
        assert manager.active_count == 1
        assert app.last_snapshot is not None
        assert app.last_snapshot["os"]["hostname"] == "testhost"
        assert pilot.app.query_one("#cpu-panel", CpuPanel) is not None
        assert pilot.app.query_one("#host-panel", HostPanel) is not None


@pytest.mark.asyncio
async def test_app_receives_ticks():
    app, manager, ticker = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        first = app.last_snapshot

        await ticker.wait_for_sleepers(1)
        ticker.tick()
        for _ in range(50):
            await pilot.pause(0.01)
            if app.last_snapshot is not first:
                break

        assert app.last_snapshot is not first


@pytest.mark.asyncio
async def test_quit_detaches():
    app, manager, _ = make_app()
    async with app.run_test() as pilot:
        await pilot.pause()
        await pilot.press("q")

        assert manager.active_count == 0
        assert app.session_id is None
