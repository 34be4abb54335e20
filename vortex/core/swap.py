from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any

# Placeholder estimate: flat 3% slippage, no pricing source.
ESTIMATE_MULTIPLIER = Decimal("0.97")
ESTIMATE_PLACES = Decimal("0.0001")


class SwapError(Exception):
    """Base class for swaps rejected before reaching the peer."""


class UnsupportedSwapError(SwapError):
    """Neither side of the pair is the native coin."""

    def __init__(self, from_token: str, to_token: str) -> None:
        self.from_token = from_token
        self.to_token = to_token
        super().__init__(
            f"Token-to-token swaps not implemented yet ({from_token} -> {to_token}). "
            "Please swap through CVX."
        )


class InvalidAmountError(SwapError):
    def __init__(self, raw: Any) -> None:
        self.raw = raw
        super().__init__("Please enter a valid amount")


@dataclass(frozen=True, slots=True)
class TokenRegistry:
    tokens: dict[str, str | None]
    native_symbols: tuple[str, ...] = ("CVX", "CVM")

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self.tokens

    def symbols(self) -> list[str]:
        return list(self.tokens)

    def address_of(self, symbol: str) -> str | None:
        return self.tokens.get(symbol.upper())

    def is_native(self, symbol: str) -> bool:
        return symbol.upper() in self.native_symbols

    def uses_native_balance(self, symbol: str) -> bool:
        # Unregistered tokens read the native balance until an address is configured.
        return self.is_native(symbol) or self.address_of(symbol) is None


@dataclass(slots=True)
class SwapIntent:
    from_token: str
    to_token: str
    from_amount: Decimal = field(default_factory=Decimal)
    to_amount: Decimal = field(default_factory=Decimal)

    def flip(self) -> None:
        self.from_token, self.to_token = self.to_token, self.from_token
        self.clear_amounts()

    def clear_amounts(self) -> None:
        self.from_amount = Decimal(0)
        self.to_amount = Decimal(0)


@dataclass(frozen=True, slots=True)
class PlannedSwap:
    # "buy":  pay native, receive token.
    # "sell": pay token, receive native.
    side: str
    token: str
    token_address: str | None
    amount: Decimal


def parse_amount(raw: Any) -> Decimal | None:
    """Return a positive finite amount, or None for anything else."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def estimate_output(amount: Decimal) -> Decimal:
    with localcontext() as ctx:
        # Every integer digit plus the four fixed places must fit.
        ctx.prec = max(ctx.prec, amount.adjusted() + 8)
        return (amount * ESTIMATE_MULTIPLIER).quantize(ESTIMATE_PLACES, rounding=ROUND_HALF_UP)


def plan_swap(intent: SwapIntent, registry: TokenRegistry, raw_amount: Any) -> PlannedSwap:
    amount = parse_amount(raw_amount)
    if amount is None:
        raise InvalidAmountError(raw_amount)

    from_native = registry.is_native(intent.from_token)
    to_native = registry.is_native(intent.to_token)
    if from_native and not to_native:
        return PlannedSwap(
            side="buy",
            token=intent.to_token,
            token_address=registry.address_of(intent.to_token),
            amount=amount,
        )
    if to_native and not from_native:
        return PlannedSwap(
            side="sell",
            token=intent.from_token,
            token_address=registry.address_of(intent.from_token),
            amount=amount,
        )
    raise UnsupportedSwapError(intent.from_token, intent.to_token)


def format_balance(balance: Any) -> str:
    """Thousands-separated balance with at most three decimals."""
    if not balance:
        return "0"
    try:
        num = Decimal(str(balance))
    except InvalidOperation:
        return str(balance)
    if not num.is_finite():
        return str(balance)
    text = format(num.quantize(Decimal("0.001"), rounding=ROUND_HALF_UP), ",f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
