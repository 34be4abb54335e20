"""VorteX swap controller.

Holds everything the swap page shows (connection, pair, inputs, balances,
notifications) and drives the ``PeerClient`` in response to user actions.
The page never touches the peer directly: it posts an action name to the
web API, the API looks it up in ``SwapController.bindings()`` and returns
``snapshot()``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

from vortex.adapters.convex_peer import PeerClient, PeerError, resolve_peer_client
from vortex.config.models import ProgramConfig
from vortex.core.swap import (
    InvalidAmountError,
    SwapError,
    SwapIntent,
    TokenRegistry,
    estimate_output,
    format_balance,
    parse_amount,
    plan_swap,
)

logger = logging.getLogger("vortex.webui.controller")

_MAX_NOTIFICATIONS = 50

ClientFactory = Callable[[], Awaitable[PeerClient]]
Action = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Notification:
    kind: str  # "success" | "error" | "info"
    message: str
    at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message, "at": self.at}


@dataclass(slots=True)
class ViewState:
    from_input: str = ""
    to_input: str = ""
    from_balance: str = "0"
    to_balance: str = "0"
    nav_balance: str | None = None
    loading: str | None = None


class SwapController:
    def __init__(
        self,
        program: ProgramConfig,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._program = program
        self._client_factory = client_factory or (lambda: resolve_peer_client(program))
        self.registry = TokenRegistry(
            tokens=dict(program.swap.tokens),
            native_symbols=tuple(program.swap.native_symbols),
        )
        self.intent = SwapIntent(program.swap.default_from, program.swap.default_to)
        self.view = ViewState()
        self.client: PeerClient | None = None
        self.is_connected = False
        self.is_swapping = False
        self._connecting = False
        self.last_error: Exception | None = None
        self.notifications: list[Notification] = []

    # ------------------------------------------------------------------
    # Notifications / loading
    # ------------------------------------------------------------------

    def notify(self, message: str, kind: str = "info") -> None:
        self.notifications.append(Notification(kind=kind, message=message))
        if len(self.notifications) > _MAX_NOTIFICATIONS:
            self.notifications = self.notifications[-_MAX_NOTIFICATIONS:]
        log = logger.error if kind == "error" else logger.info
        log("notify %s: %s", kind, message)

    def _show_loading(self, message: str) -> None:
        self.view.loading = message

    def _hide_loading(self) -> None:
        self.view.loading = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def toggle_connection(self) -> None:
        if self.is_connected:
            await self.disconnect()
        else:
            await self.connect()

    async def connect(self) -> None:
        if self.is_connected or self._connecting:
            return
        self._connecting = True
        self._show_loading("Connecting to Convex...")
        try:
            client = await self._client_factory()
        except PeerError as exc:
            logger.error("failed to connect wallet: %s", exc)
            self.client = None
            self.is_connected = False
            self.last_error = exc
            self.notify("Failed to connect to Convex network. Please try again.", "error")
            return
        finally:
            self._connecting = False
            self._hide_loading()

        self.client = client
        self.is_connected = True
        await self.update_balances()
        self.notify("Connected to Convex network!", "success")

    async def disconnect(self) -> None:
        client, self.client = self.client, None
        self.is_connected = False
        if client is not None:
            await client.close()
        self.view.nav_balance = None
        self.view.from_balance = "0"
        self.view.to_balance = "0"
        self.notify("Disconnected from Convex", "info")

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def token_balance(self, symbol: str) -> Decimal:
        client = self.client
        if client is None:
            return Decimal(0)
        if self.registry.uses_native_balance(symbol):
            return await client.get_balance()
        token_address = self.registry.address_of(symbol)
        try:
            result = await client.query(f"(call {token_address} (balance {client.address}))")
        except PeerError as exc:
            logger.warning("failed to get %s balance: %s", symbol, exc)
            return Decimal(0)
        try:
            return Decimal(str(result.value)) if result.value else Decimal(0)
        except ArithmeticError:
            logger.warning("unexpected %s balance value: %r", symbol, result.value)
            return Decimal(0)

    async def update_balances(self) -> None:
        if not self.is_connected or self.client is None:
            return
        from_balance = await self.token_balance(self.intent.from_token)
        to_balance = await self.token_balance(self.intent.to_token)
        self.view.from_balance = format_balance(from_balance)
        self.view.to_balance = format_balance(to_balance)
        self.view.nav_balance = self.view.from_balance

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_from_amount_change(self, raw: Any) -> None:
        self.view.from_input = "" if raw is None else str(raw)
        amount = parse_amount(raw)
        if not self.is_connected or amount is None:
            self.view.to_input = ""
            return
        try:
            estimate = estimate_output(amount)
        except ArithmeticError as exc:
            logger.warning("cannot estimate output for %r: %s", raw, exc)
            self.view.to_input = ""
            return
        self.intent.from_amount = amount
        self.intent.to_amount = estimate
        self.view.to_input = format(estimate, "f")

    async def swap_token_positions(self) -> None:
        self.intent.flip()
        self.view.from_input = ""
        self.view.to_input = ""
        if self.is_connected:
            await self.update_balances()

    async def select_token(self, position: str, symbol: str) -> bool:
        chosen = str(symbol or "").strip().upper()
        if chosen not in self.registry:
            logger.info("ignoring unknown %s token %r", position, symbol)
            return False
        if position == "from":
            self.intent.from_token = chosen
        elif position == "to":
            self.intent.to_token = chosen
        else:
            raise ValueError(f"invalid token position: {position!r}")
        if self.is_connected:
            await self.update_balances()
        return True

    # ------------------------------------------------------------------
    # Swap
    # ------------------------------------------------------------------

    async def execute_swap(self) -> None:
        if not self.is_connected or self.client is None:
            self.notify("Please connect your wallet first", "error")
            return
        if self.is_swapping:
            return

        self.is_swapping = True
        self._show_loading("Executing swap...")
        try:
            planned = plan_swap(self.intent, self.registry, self.view.from_input)
            try:
                if planned.side == "buy":
                    await self.client.buy_tokens(planned.token_address, planned.amount)
                else:
                    await self.client.sell_tokens(planned.token_address, planned.amount)
            except ArithmeticError as exc:
                raise InvalidAmountError(self.view.from_input) from exc
            self.last_error = None
            self.notify("Swap completed successfully!", "success")
            self.view.from_input = ""
            self.view.to_input = ""
            self.intent.clear_amounts()
        except (SwapError, PeerError) as exc:
            logger.error("swap failed: %s", exc)
            self.last_error = exc
            self.notify(f"Swap failed: {exc}", "error")
        finally:
            self.is_swapping = False
            self._hide_loading()
            await self.update_balances()

    # ------------------------------------------------------------------
    # Binding table / view
    # ------------------------------------------------------------------

    def bindings(self) -> dict[str, Action]:
        async def _from_amount(payload: dict[str, Any]) -> None:
            self.on_from_amount_change(payload.get("value"))

        async def _select_token(payload: dict[str, Any]) -> None:
            await self.select_token(str(payload.get("position", "")), str(payload.get("symbol", "")))

        return {
            "toggle_connection": lambda _payload: self.toggle_connection(),
            "execute_swap": lambda _payload: self.execute_swap(),
            "swap_positions": lambda _payload: self.swap_token_positions(),
            "from_amount": _from_amount,
            "select_token": _select_token,
            "refresh_balances": lambda _payload: self.update_balances(),
        }

    def snapshot(self) -> dict[str, Any]:
        loading = self.view.loading
        if loading:
            swap_label = loading
        elif self.is_connected:
            swap_label = "Swap"
        else:
            swap_label = "Connect Wallet to Swap"
        return {
            "connected": self.is_connected,
            "address": self.client.address if self.client else None,
            "peer_url": self._program.peer.url,
            "from_token": self.intent.from_token,
            "to_token": self.intent.to_token,
            "from_input": self.view.from_input,
            "to_input": self.view.to_input,
            "from_balance": self.view.from_balance,
            "to_balance": self.view.to_balance,
            "nav_balance": self.view.nav_balance,
            "tokens": self.registry.symbols(),
            "is_swapping": self.is_swapping,
            "loading": loading,
            "connect_label": "Connected" if self.is_connected else "Connect Wallet",
            "swap_label": swap_label,
            "swap_enabled": self.is_connected and not loading,
            "notifications": [n.to_dict() for n in self.notifications[-10:]],
        }
