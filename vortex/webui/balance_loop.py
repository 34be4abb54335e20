"""VorteX WebUI – background balance refresh loop.

While the controller is connected, refresh the from/to balances every
``interval_seconds`` (15 s by default) so the page stays current without the
user touching anything.  Disconnected cycles are skipped, not counted.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from vortex.webui.controller import SwapController

logger = logging.getLogger("vortex.webui.balance_loop")

_MAX_LOG_EVENTS = 200


class BalanceLoop:
    """Asyncio background task that polls balances for the swap page."""

    def __init__(self, controller: SwapController, interval_seconds: int = 15) -> None:
        self._controller = controller
        self._interval = interval_seconds

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._last_refresh_at: str | None = None
        self._refresh_count = 0
        self._error_count = 0
        self._log_events: list[dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Public control API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="vortex-balance-loop")
        logger.info("balance_loop started: interval=%ss", self._interval)

    def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        logger.info("balance_loop stopped")

    def status(self) -> dict[str, Any]:
        active = bool(self._task and not self._task.done() and self._running)
        return {
            "running": active,
            "connected": self._controller.is_connected,
            "interval_seconds": self._interval,
            "last_refresh_at": self._last_refresh_at,
            "refresh_count": self._refresh_count,
            "error_count": self._error_count,
            "recent_events": list(self._log_events[-20:]),
        }

    async def trigger_once(self) -> dict[str, Any]:
        """Refresh immediately and return the result."""
        self._emit("trigger", "Manual refresh triggered")
        return await self._refresh()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, message: str, extra: dict[str, Any] | None = None) -> None:
        entry: dict[str, Any] = {
            "at": datetime.now(UTC).isoformat(),
            "type": event_type,
            "message": message,
        }
        if extra:
            entry.update(extra)
        self._log_events.append(entry)
        if len(self._log_events) > _MAX_LOG_EVENTS:
            self._log_events = self._log_events[-_MAX_LOG_EVENTS:]

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            await self._refresh()

    async def _refresh(self) -> dict[str, Any]:
        if not self._controller.is_connected:
            return {"status": "skipped", "reason": "not_connected"}
        try:
            await self._controller.update_balances()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_count += 1
            logger.exception("balance_loop refresh error")
            self._emit("refresh_error", f"Refresh error: {exc}", {"error": str(exc)})
            return {"status": "error", "error": str(exc)}

        self._refresh_count += 1
        self._last_refresh_at = datetime.now(UTC).isoformat()
        view = self._controller.view
        self._emit(
            "refresh_done",
            f"Refresh {self._refresh_count} complete",
            {"from_balance": view.from_balance, "to_balance": view.to_balance},
        )
        return {
            "status": "ok",
            "at": self._last_refresh_at,
            "refresh": self._refresh_count,
            "from_balance": view.from_balance,
            "to_balance": view.to_balance,
        }
