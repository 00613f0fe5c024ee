"""Privileged host control actions (restart, shutdown)."""

import asyncio
import logging
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from hostpulse.errors import ExecError

logger = logging.getLogger(__name__)


class ControlAction(Enum):
    """Irreversible host operations that can be requested."""

    RESTART = "restart"
    SHUTDOWN = "shutdown"


@dataclass(slots=True, frozen=True)
class Ack:
    """Acknowledgment returned when a control command succeeded."""

    action: ControlAction
    message: str


ACK_MESSAGES = {
    ControlAction.RESTART: "System is restarting",
    ControlAction.SHUTDOWN: "System is shutting down",
}

FAILURE_MESSAGES = {
    ControlAction.RESTART: "Failed to restart system",
    ControlAction.SHUTDOWN: "Failed to shutdown system",
}


def default_commands(platform: str = sys.platform) -> dict[ControlAction, list[str]]:
    """Native restart/poweroff commands for a platform."""
    if platform.startswith("win"):
        return {
            ControlAction.RESTART: ["shutdown", "/r", "/t", "0"],
            ControlAction.SHUTDOWN: ["shutdown", "/s", "/t", "0"],
        }
    return {
        ControlAction.RESTART: ["sudo", "shutdown", "-r", "now"],
        ControlAction.SHUTDOWN: ["sudo", "shutdown", "-h", "now"],
    }


Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def run_command(command: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(list(command), capture_output=True, text=True, check=False)


class ControlExecutor:
    """
    Runs control commands on a dedicated worker thread.

    The telemetry path never waits on a privileged call: execute() hands the
    command to a single-worker pool and only its caller awaits the result.
    """

    def __init__(
        self,
        commands: Mapping[ControlAction, Sequence[str]] | None = None,
        *,
        dry_run: bool = False,
        runner: Runner = run_command,
    ) -> None:
        self._commands = dict(commands) if commands is not None else default_commands()
        self._dry_run = dry_run
        self._runner = runner
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ControlExecutor")

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def command_for(self, action: ControlAction) -> list[str]:
        return list(self._commands[action])

    async def execute(self, action: ControlAction | str) -> Ack:
        """Run the action off the event loop and return its acknowledgment."""
        action = ControlAction(action)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, self.run, action)

    def run(self, action: ControlAction | str) -> Ack:
        """Run the action's command synchronously, raising ExecError on failure."""
        action = ControlAction(action)
        command = self.command_for(action)
        failure = FAILURE_MESSAGES[action]

        if self._dry_run:
            logger.warning("Dry run: not executing %s command %s", action.value, command)
            return Ack(action, ACK_MESSAGES[action])

        logger.warning("Executing %s command: %s", action.value, " ".join(command))
        try:
            result = self._runner(command)
        except OSError as exc:
            # Command not found or not permitted
            logger.error("%s: %s", failure, exc)
            raise ExecError(failure, exc) from exc

        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"exit status {result.returncode}"
            logger.error("%s: %s", failure, detail)
            raise ExecError(failure, detail)

        return Ack(action, ACK_MESSAGES[action])

    def shutdown(self, wait: bool = False) -> None:
        """Release the worker thread."""
        self._pool.shutdown(wait=wait)
