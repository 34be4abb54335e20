"""Convex peer REST adapter.

A Convex peer exposes a small JSON-over-HTTP API under ``/api/v1``.  Every
request is a single POST (or GET for account info) and every response is a
JSON object shaped like ``{"value": ..., "errorCode": ..., "info": ...}``.
The presence of ``errorCode`` means failure even when the HTTP status is 200.

This module provides:
- ``PeerClient``        – async aiohttp-based client holding one ``Session``
- ``PeerResponse``      – parsed peer reply
- ``LookupResult``      – explicit ok/err wrapper for absorbing lookups
- ``resolve_peer_client`` – build a client from the program config
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

logger = logging.getLogger("vortex.adapters.convex_peer")

DEFAULT_PEER_URL = "http://peer.convex.live:8080"
DEFAULT_TIMEOUT_SECONDS = 30.0

# The init check evaluates a fixed expression as a well-known account.
INIT_SOURCE = "(+ 2 2 2 1)"
INIT_ADDRESS = "#12"
INIT_EXPECTED = 7

EXCHANGE_MODULE = "exchange.torus"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class Session:
    connected: bool = False
    address: str | None = None
    credential: str | None = None
    # Bumped after every successful transact; nothing reads it yet.
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class DemoAccount:
    account_key: str = "d82e78594610f708ad47f666bbacbab1711760652cb88bf7515ed6c3ae84a08d"
    fallback_address: str = "#12"
    fallback_credential: str = "demo"
    faucet_amount: str = "10000000"


@dataclass(frozen=True, slots=True)
class PeerResponse:
    value: Any = None
    error_code: str | None = None
    info: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload: Any) -> "PeerResponse":
        if not isinstance(payload, dict):
            return cls(value=payload)
        info = payload.get("info")
        return cls(
            value=payload.get("value"),
            error_code=payload.get("errorCode"),
            info=info if isinstance(info, dict) else None,
            raw=payload,
        )

    @property
    def juice(self) -> Any:
        return (self.info or {}).get("juice")


@dataclass(frozen=True, slots=True)
class LookupResult:
    """Outcome of a lookup whose failures are absorbed rather than raised.

    Callers pick the fallback with ``unwrap_or``; ``error`` keeps the reason.
    """

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PeerClient:
    """Async client for one Convex peer.

    Usage::

        client = await PeerClient.connect("http://peer.convex.live:8080")
        balance = await client.get_balance()
        await client.buy_tokens("#128", 100)
        await client.close()
    """

    def __init__(
        self,
        peer_url: str = DEFAULT_PEER_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        demo: DemoAccount | None = None,
        exchange_module: str = EXCHANGE_MODULE,
    ) -> None:
        self._base_url = peer_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._demo = demo or DemoAccount()
        self._exchange_module = exchange_module
        self._http: aiohttp.ClientSession | None = None
        self.session: Session | None = None

    @classmethod
    async def connect(
        cls,
        peer_url: str = DEFAULT_PEER_URL,
        address: str | None = None,
        credential: str | None = None,
        **kwargs: Any,
    ) -> "PeerClient":
        """Check the peer answers, then adopt or bootstrap an account.

        Raises:
            PeerConnectionError: peer unreachable, timed out, or failed the
                init check.  The client is closed before raising.
        """
        client = cls(peer_url, **kwargs)
        try:
            await client.initialize()
            if address and credential:
                client.set_address(address)
                client.set_credential(credential)
            else:
                await client.create_demo_account()
        except BaseException:
            await client.close()
            raise
        return client

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def peer_url(self) -> str:
        return self._base_url

    @property
    def is_connected(self) -> bool:
        return bool(self.session and self.session.connected)

    @property
    def address(self) -> str | None:
        return self.session.address if self.session else None

    def set_address(self, address: str) -> None:
        if self.session is None:
            self.session = Session()
        self.session.address = address
        self.session.sequence = 0

    def set_credential(self, credential: str) -> None:
        if self.session is None:
            self.session = Session()
        self.session.credential = credential

    def _make_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=self._timeout)

    def _http_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = self._make_session()
        return self._http

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        logger.info("initializing peer connection: %s", self._base_url)
        try:
            result = await self.query(INIT_SOURCE, INIT_ADDRESS)
        except QueryError as exc:
            logger.error("peer init query failed: %s", exc)
            raise PeerConnectionError(
                f"Peer {self._base_url} unreachable: {exc}",
                status=exc.status,
                body=exc.body,
                endpoint="query",
            ) from exc
        if result.value != INIT_EXPECTED:
            raise PeerConnectionError(
                f"Peer connection test failed: expected {INIT_EXPECTED}, got {result.value!r}",
                endpoint="query",
            )
        if self.session is None:
            self.session = Session()
        self.session.connected = True
        logger.info("peer connection established")
        return True

    async def create_demo_account(self) -> dict[str, Any] | None:
        """Create an account from the demo key, or fall back to the shared demo account."""
        url = f"{self._base_url}/api/v1/createAccount"
        try:
            async with self._http_session().post(
                url, json={"accountKey": self._demo.account_key}
            ) as resp:
                if 200 <= resp.status < 300:
                    account = await resp.json(content_type=None)
                    self.set_address(str(account["address"]))
                    self.set_credential(self._demo.account_key)
                    logger.info("created account %s", self.address)
                    await self.request_faucet_coins()
                    return account
                logger.info("createAccount returned HTTP %s", resp.status)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("account creation not available: %s", exc)

        self.set_address(self._demo.fallback_address)
        self.set_credential(self._demo.fallback_credential)
        logger.info("using demo account %s", self.address)
        return None

    async def request_faucet_coins(self) -> Any:
        url = f"{self._base_url}/api/v1/faucet"
        body = {"address": self.address, "amount": self._demo.faucet_amount}
        try:
            async with self._http_session().post(url, json=body) as resp:
                if 200 <= resp.status < 300:
                    data = await resp.json(content_type=None)
                    logger.info("received faucet coins: %s", data)
                    return data
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("faucet not available: %s", exc)
        return None

    # ------------------------------------------------------------------
    # Core calls
    # ------------------------------------------------------------------

    async def _post(
        self,
        endpoint: str,
        body: dict[str, Any],
        error_cls: type["PeerError"],
    ) -> PeerResponse:
        url = f"{self._base_url}/api/v1/{endpoint}"
        logger.debug("POST %s %s", url, body.get("source"))
        try:
            async with self._http_session().post(url, json=body, timeout=self._timeout) as resp:
                status = resp.status
                raw = await resp.read()
        except asyncio.TimeoutError as exc:
            raise error_cls(f"{endpoint} timed out", endpoint=endpoint) from exc
        except aiohttp.ClientError as exc:
            raise error_cls(f"{endpoint} failed: {exc}", endpoint=endpoint) from exc

        text = raw.decode("utf-8", errors="replace")
        if not 200 <= status < 300:
            raise error_cls(
                f"{endpoint} failed with HTTP {status}: {text}",
                status=status,
                body=text,
                endpoint=endpoint,
            )
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise error_cls(
                f"{endpoint} returned a non-JSON body", status=status, body=text, endpoint=endpoint
            ) from exc

        result = PeerResponse.from_json(payload)
        if result.error_code:
            raise error_cls(
                f"Convex error: {result.value or result.error_code}",
                status=status,
                body=text,
                endpoint=endpoint,
                error_code=result.error_code,
            )
        return result

    async def query(self, source: str, address: str | None = None) -> PeerResponse:
        """Run a read-only query.

        Args:
            source:  expression in the peer's scripting dialect, sent verbatim.
            address: account to evaluate as (default: the session address).

        Raises:
            QueryError: transport failure, timeout, non-2xx, or ``errorCode``.
        """
        body = {"address": address if address is not None else self.address, "source": source}
        try:
            return await self._post("query", body, QueryError)
        except QueryError as exc:
            logger.error("query failed: %s", exc)
            raise

    async def transact(self, source: str) -> PeerResponse:
        """Submit a state-changing transaction as the session account.

        Raises:
            NotConnectedError: no connected session or no address.
            TransactionError: transport failure, timeout, non-2xx, or ``errorCode``.
        """
        session = self.session
        if session is None or not session.connected:
            raise NotConnectedError("Not connected to Convex network")
        if not session.address:
            raise NotConnectedError("No address set for transaction")

        logger.info("executing transaction: %s", source)
        body = {"address": session.address, "source": source, "seed": session.credential}
        try:
            result = await self._post("transact", body, TransactionError)
        except TransactionError as exc:
            logger.error("transaction failed: %s", exc)
            raise

        session.sequence += 1
        logger.info("transaction completed: value=%r juice=%s", result.value, result.juice)
        return result

    # ------------------------------------------------------------------
    # Convenience lookups
    # ------------------------------------------------------------------

    async def lookup_balance(self, address: str | None = None) -> LookupResult:
        target = address if address is not None else self.address
        try:
            result = await self.query(f"(balance {target})")
            return LookupResult(value=_to_decimal(result.value))
        except (PeerError, InvalidOperation) as exc:
            logger.warning("failed to get balance of %s: %s", target, exc)
            return LookupResult(value=Decimal(0), error=str(exc))

    async def get_balance(self, address: str | None = None) -> Decimal:
        """Native balance of *address*; any failure reads as zero."""
        return (await self.lookup_balance(address)).unwrap_or(Decimal(0))

    async def get_account_info(self, address: str | None = None) -> dict[str, Any] | None:
        target = address if address is not None else self.address
        if not target:
            return None
        url = f"{self._base_url}/api/v1/accounts/{target.replace('#', '')}"
        try:
            async with self._http_session().get(url, timeout=self._timeout) as resp:
                if 200 <= resp.status < 300:
                    return await resp.json(content_type=None)
                logger.warning("account info for %s returned HTTP %s", target, resp.status)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("failed to get account info: %s", exc)
        return None

    def _exchange_source(self, call: str) -> str:
        return f"(do (import {self._exchange_module} :as torus) {call})"

    async def buy_tokens(self, token_address: str | None, amount: Any) -> PeerResponse:
        return await self.transact(
            self._exchange_source(f"(torus/buy-tokens {_literal(token_address)} {_literal(amount)})")
        )

    async def sell_tokens(self, token_address: str | None, amount: Any) -> PeerResponse:
        return await self.transact(
            self._exchange_source(f"(torus/sell-tokens {_literal(token_address)} {_literal(amount)})")
        )

    async def lookup_market(self, token_address: str | None) -> LookupResult:
        source = self._exchange_source(f"(torus/get-market {_literal(token_address)})")
        try:
            result = await self.query(source)
            return LookupResult(value=result.value)
        except PeerError as exc:
            return LookupResult(error=str(exc))

    async def get_market(self, token_address: str | None) -> Any:
        return (await self.lookup_market(token_address)).unwrap_or(None)

    async def close(self) -> None:
        """Forget the session and close the HTTP connection pool."""
        self.session = None
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
        logger.info("peer connection closed")


def _to_decimal(value: Any) -> Decimal:
    if not value:
        return Decimal(0)
    return Decimal(str(value))


def _literal(value: Any) -> str:
    """Render a Python value for interpolation into a source expression."""
    if value is None:
        return "nil"
    if isinstance(value, Decimal):
        # Plain positional digits; no context rounding.
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------

class PeerError(Exception):
    """Base class for failures talking to the peer."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str = "",
        endpoint: str = "",
        error_code: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.endpoint = endpoint
        self.error_code = error_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "status": self.status,
            "endpoint": self.endpoint,
            "error_code": self.error_code,
        }


class PeerConnectionError(PeerError):
    """Peer unreachable or failed the init check."""


class QueryError(PeerError):
    """Query rejected by transport, HTTP status, or a peer ``errorCode``."""


class TransactionError(PeerError):
    """Transaction rejected by transport, HTTP status, or a peer ``errorCode``."""


class NotConnectedError(PeerError):
    """A transaction was attempted without a connected session."""


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------

async def resolve_peer_client(
    program: Any,
    *,
    address: str | None = None,
    credential: str | None = None,
) -> PeerClient:
    """Connect a ``PeerClient`` using the ``peer`` and ``demo_account`` config sections."""
    peer = program.peer
    demo = program.demo_account
    return await PeerClient.connect(
        peer.url,
        address or peer.address,
        credential or peer.credential,
        timeout=peer.timeout_seconds,
        exchange_module=peer.exchange_module,
        demo=DemoAccount(
            account_key=demo.account_key,
            fallback_address=demo.fallback_address,
            fallback_credential=demo.fallback_credential,
            faucet_amount=demo.faucet_amount,
        ),
    )
