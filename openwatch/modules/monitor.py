"""Status Monitor - adaptive polling of the open/closed status source.

Each tick polls the source once. The first successful poll after startup
only records a baseline; later polls compare against the last known state
and, on a flip, append a transition event, compute the "usually closes /
opens around" hint and hand both to the announcer.

The next tick is scheduled when the current one finishes, so a slow poll
delays only itself. The interval is re-evaluated after every tick: the
night window forces the slowest cadence, otherwise the open or closed
interval applies. A delay never runs past the next night-window edge, so
the cadence switches on time. The timer handle lives on MonitorState and
is always cancelled before a new one is created, so only one tick loop is
active.
"""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from openwatch.errors import StatusFetchError
from openwatch.hub.constants import EVENT_TRANSITION, MODULE_MONITOR
from openwatch.hub.core import MonitorHub, Module
from openwatch.hub.settings import PredictionParameters
from openwatch.modules.status_source import Announcer, LoggingAnnouncer, StatusSource
from openwatch.shared.predictor import prediction_text


def is_night(hour: int, start_hour: int, end_hour: int) -> bool:
    """True if ``hour`` falls in [start_hour, end_hour), wrapping past midnight.

    Equal start and end hours disable the night window.
    """
    if start_hour == end_hour:
        return False
    if start_hour > end_hour:
        return hour >= start_hour or hour < end_hour
    return start_hour <= hour < end_hour


def select_interval_ms(params: PredictionParameters, is_open: bool | None, hour: int) -> int:
    """Polling interval for the current regime.

    The night window overrides the state. An unknown state (no successful
    poll yet) polls at the closed cadence.
    """
    if is_night(hour, params.night_start_hour, params.night_end_hour):
        return params.poll_interval_night_ms
    return params.poll_interval_open_ms if is_open else params.poll_interval_closed_ms


def seconds_to_window_edge(now: datetime, start_hour: int, end_hour: int) -> float | None:
    """Seconds until the night window next opens or closes, None if disabled.

    Caps the timer delay so a long night interval cannot overshoot the
    start of the daytime cadence, and vice versa.
    """
    if start_hour == end_hour:
        return None
    edges = []
    for edge_hour in (start_hour, end_hour):
        edge = now.replace(hour=edge_hour, minute=0, second=0, microsecond=0)
        if edge <= now:
            edge += timedelta(days=1)
        edges.append((edge - now).total_seconds())
    return min(edges)


def _regime_label(night: bool, is_open: bool | None) -> str:
    if night:
        return "night"
    return "open" if is_open else "closed"


@dataclass
class MonitorState:
    """Process-local monitor state. Never persisted; a restart starts blank."""

    last_known_open: bool | None = None
    initialized: bool = False
    night: bool | None = None
    interval_ms: int | None = None
    last_poll_at: datetime | None = None
    last_poll_ok: bool | None = None
    last_change_at: datetime | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def schedule(self, delay_s: float, callback: Callable[[], None]) -> None:
        """Cancel the active timer, then arm a new one."""
        self.cancel_timer()
        self.timer = asyncio.get_running_loop().call_later(delay_s, callback)


class StatusMonitor(Module):
    """Adaptive scheduler that records open/close transitions."""

    def __init__(self, hub: MonitorHub, source: StatusSource, announcer: Announcer | None = None):
        super().__init__(MODULE_MONITOR, hub)
        self.source = source
        self.announcer = announcer or LoggingAnnouncer()
        self.state = MonitorState()
        self._tick_task: asyncio.Task | None = None
        self._stopped = False

    async def initialize(self):
        """Take the baseline poll and start the tick loop."""
        self.state.cancel_timer()
        self.state = MonitorState()
        self._stopped = False
        await self.tick()
        await self._schedule_next()
        self.logger.info("Status monitor started")

    async def shutdown(self):
        """Stop the tick loop. An in-flight tick is cancelled."""
        self._stopped = True
        self.state.cancel_timer()
        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()
        self.logger.info("Status monitor stopped")

    async def on_parameters_updated(self, params: PredictionParameters):
        await self.reschedule()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def reschedule(self):
        """Re-evaluate the interval now and replace the active timer.

        Skipped while a tick is running; that tick reschedules on completion.
        """
        if self._stopped or self.tick_in_flight():
            return
        await self._schedule_next()

    def tick_in_flight(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    async def _schedule_next(self):
        try:
            params = await self.hub.settings.get()
        except Exception as e:
            self.logger.warning(f"Could not read parameters, using defaults for scheduling: {e}")
            params = PredictionParameters()

        now = self.hub.clock()
        hour = now.hour
        night = is_night(hour, params.night_start_hour, params.night_end_hour)
        interval_ms = select_interval_ms(params, self.state.last_known_open, hour)

        if night != self.state.night or interval_ms != self.state.interval_ms:
            minutes = interval_ms / 60000
            self.logger.info(
                "Check interval set to %g minute(s) (%s)",
                minutes,
                _regime_label(night, self.state.last_known_open),
            )
        self.state.night = night
        self.state.interval_ms = interval_ms
        delay_s = interval_ms / 1000
        edge_s = seconds_to_window_edge(now, params.night_start_hour, params.night_end_hour)
        if edge_s is not None:
            delay_s = min(delay_s, edge_s)
        self.state.schedule(delay_s, self._on_timer)

    def _on_timer(self):
        self.state.timer = None
        if self._stopped or self.tick_in_flight():
            return
        self._tick_task = asyncio.create_task(self._run_tick())

    async def _run_tick(self):
        try:
            await self.tick()
        except Exception:
            self.logger.exception("Unexpected error during status tick")
        if not self._stopped:
            await self._schedule_next()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll_open(self) -> bool:
        status = await self.source.poll()
        is_open = status.get("open") if isinstance(status, dict) else None
        if not isinstance(is_open, bool):
            raise StatusFetchError(f"Status source returned unusable payload: {status!r}")
        return is_open

    async def tick(self) -> bool:
        """Run one poll cycle. Returns True if a transition was recorded."""
        now = self.hub.clock()
        self.state.last_poll_at = now
        try:
            is_open = await self._poll_open()
        except Exception as e:
            self.state.last_poll_ok = False
            self.logger.warning(f"Status poll failed, skipping tick: {e}")
            return False
        self.state.last_poll_ok = True

        if not self.state.initialized:
            self.state.last_known_open = is_open
            self.state.initialized = True
            self.logger.info("Initial status: %s", "open" if is_open else "closed")
            return False

        if is_open == self.state.last_known_open:
            return False

        try:
            event = await self.hub.event_store.append(now.date().isoformat(), now.strftime("%H:%M"), is_open)
        except Exception as e:
            self.logger.error(f"Failed to record transition, state left unchanged: {e}")
            return False

        try:
            predicted = await self.hub.predict_next(is_open)
        except Exception as e:
            self.logger.warning(f"Prediction failed: {e}")
            predicted = None
        text = prediction_text(is_open, predicted)

        self.state.last_known_open = is_open
        self.state.last_change_at = now
        self.logger.info("Status changed: %s", "open" if is_open else "closed")

        try:
            await self.announcer.announce(is_open, text)
        except Exception as e:
            self.logger.error(f"Announcer failed: {e}")

        await self.hub.publish(
            EVENT_TRANSITION,
            {"event": event.to_dict(), "open": is_open, "prediction": text},
        )
        return True

    def snapshot(self) -> dict[str, Any]:
        """Live state for the status endpoint."""
        return {
            "initialized": self.state.initialized,
            "open": self.state.last_known_open,
            "night": self.state.night,
            "interval_ms": self.state.interval_ms,
            "last_poll_at": self.state.last_poll_at.isoformat() if self.state.last_poll_at else None,
            "last_poll_ok": self.state.last_poll_ok,
            "last_change_at": self.state.last_change_at.isoformat() if self.state.last_change_at else None,
            "tick_in_flight": self.tick_in_flight(),
        }
