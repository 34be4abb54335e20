"""Load ``program.yaml`` into ``ProgramConfig``.

Lookup order when no explicit path is given:
``~/.vortex/config/program.yaml``, then ``config/program.yaml`` in the repo,
then built-in defaults.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from vortex.config.models import (
    DemoAccountConfig,
    PeerConfig,
    ProgramConfig,
    SwapConfig,
    WebUiConfig,
)

_REPO_ROOT = Path(__file__).resolve().parents[2]


def default_program_path() -> Path | None:
    candidates = [
        Path.home() / ".vortex" / "config" / "program.yaml",
        _REPO_ROOT / "config" / "program.yaml",
    ]
    for c in candidates:
        if c.exists():
            return c
    return None


def load_program_config(path: str | Path | None = None) -> ProgramConfig:
    resolved = Path(path) if path else default_program_path()
    if resolved is None:
        return ProgramConfig()
    with open(resolved, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("invalid_program_config")
    return parse_program_config(data, source_path=str(resolved))


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    raw = data.get(key) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"invalid_{key}_section")
    return raw


def _optional_str(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


def parse_program_config(data: dict[str, Any], source_path: str | None = None) -> ProgramConfig:
    peer_raw = _section(data, "peer")
    demo_raw = _section(data, "demo_account")
    swap_raw = _section(data, "swap")
    webui_raw = _section(data, "webui")

    defaults = PeerConfig()
    url = str(peer_raw.get("url") or defaults.url).strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError("invalid_peer_url")
    timeout_seconds = float(peer_raw.get("timeout_seconds", defaults.timeout_seconds))
    if timeout_seconds <= 0:
        raise ValueError("invalid_timeout_seconds")
    peer = PeerConfig(
        url=url,
        timeout_seconds=timeout_seconds,
        exchange_module=str(peer_raw.get("exchange_module") or defaults.exchange_module),
        address=_optional_str(peer_raw.get("address")),
        credential=_optional_str(peer_raw.get("credential")),
    )

    demo_defaults = DemoAccountConfig()
    demo = DemoAccountConfig(
        account_key=str(demo_raw.get("account_key") or demo_defaults.account_key),
        fallback_address=str(demo_raw.get("fallback_address") or demo_defaults.fallback_address),
        fallback_credential=str(
            demo_raw.get("fallback_credential") or demo_defaults.fallback_credential
        ),
        faucet_amount=str(demo_raw.get("faucet_amount") or demo_defaults.faucet_amount),
    )

    swap_defaults = SwapConfig()
    tokens_raw = swap_raw.get("tokens")
    if tokens_raw is None:
        tokens = dict(swap_defaults.tokens)
    elif isinstance(tokens_raw, dict) and tokens_raw:
        tokens = {str(sym).strip().upper(): _optional_str(addr) for sym, addr in tokens_raw.items()}
    else:
        raise ValueError("invalid_tokens")
    native = tuple(
        str(s).strip().upper()
        for s in (swap_raw.get("native_symbols") or swap_defaults.native_symbols)
    )
    default_from = str(swap_raw.get("default_from") or swap_defaults.default_from).upper()
    default_to = str(swap_raw.get("default_to") or swap_defaults.default_to).upper()
    for symbol in (default_from, default_to):
        if symbol not in tokens:
            raise ValueError("unknown_default_token")
    refresh = int(swap_raw.get("balance_refresh_seconds", swap_defaults.balance_refresh_seconds))
    if refresh <= 0:
        raise ValueError("invalid_balance_refresh_seconds")
    swap = SwapConfig(
        default_from=default_from,
        default_to=default_to,
        balance_refresh_seconds=refresh,
        native_symbols=native,
        tokens=tokens,
    )

    webui_defaults = WebUiConfig()
    webui = WebUiConfig(
        host=str(webui_raw.get("host") or webui_defaults.host),
        port=int(webui_raw.get("port") or webui_defaults.port),
    )
    return ProgramConfig(
        peer=peer,
        demo_account=demo,
        swap=swap,
        webui=webui,
        source_path=source_path,
    )
