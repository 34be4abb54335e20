from __future__ import annotations

from dataclasses import dataclass, field

from vortex.adapters.convex_peer import DEFAULT_PEER_URL, DEFAULT_TIMEOUT_SECONDS, EXCHANGE_MODULE


def _default_tokens() -> dict[str, str | None]:
    # Only the native coin is live for now; the rest read the native balance
    # until real contract addresses are configured.
    return {"CVX": None, "CVM": None, "PAI": None, "USDC": None, "TOKEN": None}


@dataclass(frozen=True, slots=True)
class PeerConfig:
    url: str = DEFAULT_PEER_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    exchange_module: str = EXCHANGE_MODULE
    # When both are set the demo-account bootstrap is skipped.
    address: str | None = None
    credential: str | None = None


@dataclass(frozen=True, slots=True)
class DemoAccountConfig:
    account_key: str = "d82e78594610f708ad47f666bbacbab1711760652cb88bf7515ed6c3ae84a08d"
    fallback_address: str = "#12"
    fallback_credential: str = "demo"
    faucet_amount: str = "10000000"


@dataclass(frozen=True, slots=True)
class SwapConfig:
    default_from: str = "CVX"
    default_to: str = "PAI"
    balance_refresh_seconds: int = 15
    native_symbols: tuple[str, ...] = ("CVX", "CVM")
    tokens: dict[str, str | None] = field(default_factory=_default_tokens)


@dataclass(frozen=True, slots=True)
class WebUiConfig:
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass(frozen=True, slots=True)
class ProgramConfig:
    peer: PeerConfig = field(default_factory=PeerConfig)
    demo_account: DemoAccountConfig = field(default_factory=DemoAccountConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)
    webui: WebUiConfig = field(default_factory=WebUiConfig)
    source_path: str | None = None
