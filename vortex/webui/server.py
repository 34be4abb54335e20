"""VorteX Web UI – aiohttp server.

Launch:
    python -m vortex.webui
    python -m vortex.webui --port 8765 --host 0.0.0.0 --config ~/.vortex/config/program.yaml
"""
from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from aiohttp import web

from vortex.adapters.convex_peer import PeerError
from vortex.config.io import load_program_config
from vortex.config.models import ProgramConfig
from vortex.core.swap import SwapError
from vortex.webui.balance_loop import BalanceLoop
from vortex.webui.controller import SwapController

logger = logging.getLogger("vortex.webui")


def _controller(request: web.Request) -> SwapController:
    return request.app["controller"]


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return {}
    return body if isinstance(body, dict) else {}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def handle_index(request: web.Request) -> web.Response:
    return web.Response(text=_HTML, content_type="text/html")


async def handle_state(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "state": _controller(request).snapshot()})


async def handle_action(request: web.Request) -> web.Response:
    """Dispatch POST /api/action/{name} through the controller's binding table."""
    controller = _controller(request)
    name = request.match_info["name"]
    action = controller.bindings().get(name)
    if action is None:
        return web.json_response({"ok": False, "error": f"unknown action: {name}"}, status=404)
    body = await _json_body(request)
    try:
        await action(body)
    except ValueError as exc:
        return web.json_response({"ok": False, "error": str(exc)}, status=400)
    return web.json_response({"ok": True, "state": controller.snapshot()})


async def handle_account(request: web.Request) -> web.Response:
    controller = _controller(request)
    if controller.client is None:
        return web.json_response({"ok": False, "error": "not_connected"}, status=400)
    info = await controller.client.get_account_info()
    if info is None:
        return web.json_response({"ok": False, "error": "account_info_unavailable"}, status=502)
    return web.json_response({"ok": True, "address": controller.client.address, "account": info})


async def handle_market(request: web.Request) -> web.Response:
    controller = _controller(request)
    if controller.client is None:
        return web.json_response({"ok": False, "error": "not_connected"}, status=400)
    symbol = request.match_info["token"].upper()
    if symbol not in controller.registry:
        return web.json_response({"ok": False, "error": f"unknown token: {symbol}"}, status=404)
    result = await controller.client.lookup_market(controller.registry.address_of(symbol))
    return web.json_response(
        {"ok": result.ok, "token": symbol, "market": result.value, "error": result.error}
    )


async def handle_balance_loop_status(request: web.Request) -> web.Response:
    loop: BalanceLoop = request.app["balance_loop"]
    return web.json_response(loop.status())


async def handle_balance_loop_trigger(request: web.Request) -> web.Response:
    loop: BalanceLoop = request.app["balance_loop"]
    result = await loop.trigger_once()
    return web.json_response({"ok": result["status"] != "error", "result": result})


@web.middleware
async def _error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except (PeerError, SwapError) as exc:
        logger.error("%s %s failed: %s", request.method, request.path, exc)
        payload: dict[str, Any] = {"ok": False, "error": str(exc)}
        if isinstance(exc, PeerError):
            payload.update(exc.to_dict())
        return web.json_response(payload, status=502 if isinstance(exc, PeerError) else 400)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

async def _on_startup(app: web.Application) -> None:
    app["balance_loop"].start()


async def _on_cleanup(app: web.Application) -> None:
    app["balance_loop"].stop()
    controller: SwapController = app["controller"]
    if controller.client is not None:
        await controller.client.close()


def create_app(
    program: ProgramConfig | None = None,
    controller: SwapController | None = None,
) -> web.Application:
    program = program or load_program_config()
    controller = controller or SwapController(program)
    balance_loop = BalanceLoop(controller, interval_seconds=program.swap.balance_refresh_seconds)

    app = web.Application(middlewares=[_error_middleware])
    app["program"] = program
    app["controller"] = controller
    app["balance_loop"] = balance_loop
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)

    app.router.add_get("/", handle_index)
    app.router.add_get("/api/state", handle_state)
    app.router.add_post("/api/action/{name}", handle_action)
    app.router.add_get("/api/account", handle_account)
    app.router.add_get("/api/market/{token}", handle_market)
    app.router.add_get("/api/balance-loop/status", handle_balance_loop_status)
    app.router.add_post("/api/balance-loop/trigger", handle_balance_loop_trigger)
    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(description="VorteX Web UI")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--config", default=None, help="path to program.yaml")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    program = load_program_config(args.config)
    host = args.host or program.webui.host
    port = args.port or program.webui.port
    app = create_app(program)
    print(f"VorteX Web UI -> http://{host}:{port}", flush=True)
    web.run_app(app, host=host, port=port, print=None, handle_signals=True)


# ---------------------------------------------------------------------------
# Embedded HTML/CSS/JS frontend
# ---------------------------------------------------------------------------

_HTML = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8"/>
<meta name="viewport" content="width=device-width,initial-scale=1"/>
<title>VorteX</title>
<style>
  :root {
    --bg: #120b24;
    --surface: #1d1436;
    --surface2: #2a1f4a;
    --border: #3b2d63;
    --text: #ece8f6;
    --text-muted: #9d93b8;
    --purple: #7c3aed;
    --purple-hover: #6d28d9;
    --green: #16a34a;
    --red: #f85149;
  }
  * { box-sizing: border-box; margin: 0; padding: 0; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
         background: var(--bg); color: var(--text); min-height: 100vh; }
  nav { display: flex; align-items: center; justify-content: space-between;
        padding: 16px 24px; border-bottom: 1px solid var(--border); }
  nav .brand { font-size: 20px; font-weight: 700; }
  nav .right { display: flex; align-items: center; gap: 16px; }
  #nav-balance { font-size: 13px; color: var(--text-muted); display: none; }
  button { border: 0; border-radius: 10px; padding: 10px 16px; font-weight: 600;
           color: #fff; background: var(--purple); cursor: pointer; }
  button:hover { background: var(--purple-hover); }
  button:disabled { opacity: .5; cursor: not-allowed; }
  button.connected { background: var(--green); }
  main { max-width: 460px; margin: 48px auto; background: var(--surface);
         border: 1px solid var(--border); border-radius: 16px; padding: 20px; }
  .token-input { background: var(--surface2); border-radius: 12px; padding: 14px; margin: 8px 0; }
  .token-input .row { display: flex; justify-content: space-between; align-items: center; }
  .token-input .label { font-size: 12px; color: var(--text-muted); }
  .token-input input { background: none; border: 0; color: var(--text); font-size: 24px;
                       width: 60%; outline: none; }
  .token-input select { background: var(--surface); color: var(--text); border: 1px solid var(--border);
                        border-radius: 8px; padding: 6px 10px; font-weight: 600; }
  .flip { display: flex; justify-content: center; }
  .flip button { border-radius: 50%; padding: 8px 12px; }
  #swap { width: 100%; margin-top: 12px; padding: 14px; }
  #toasts { position: fixed; right: 16px; bottom: 16px; display: flex; flex-direction: column; gap: 8px; }
  .toast { background: var(--surface2); border-left: 4px solid var(--purple);
           padding: 10px 14px; border-radius: 8px; font-size: 13px; max-width: 320px; }
  .toast.success { border-left-color: var(--green); }
  .toast.error { border-left-color: var(--red); }
</style>
</head>
<body>
<nav>
  <span class="brand">VorteX</span>
  <div class="right">
    <span id="nav-balance"></span>
    <button id="connect">Connect Wallet</button>
  </div>
</nav>
<main>
  <div class="token-input">
    <div class="row"><span class="label">You pay</span><span class="label" id="from-balance">Balance: 0</span></div>
    <div class="row"><input id="from-input" type="number" min="0" placeholder="0.0"/><select id="from-token"></select></div>
  </div>
  <div class="flip"><button id="flip" title="Switch tokens">&#8645;</button></div>
  <div class="token-input">
    <div class="row"><span class="label">You receive</span><span class="label" id="to-balance">Balance: 0</span></div>
    <div class="row"><input id="to-input" type="number" readonly placeholder="0.0"/><select id="to-token"></select></div>
  </div>
  <button id="swap" disabled>Connect Wallet to Swap</button>
</main>
<div id="toasts"></div>
<script>
const $ = id => document.getElementById(id);

async function api(path, body) {
  const opts = body === undefined ? {} : {
    method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body),
  };
  const r = await fetch(path, opts);
  return r.json();
}

function fillSelect(sel, tokens, value) {
  if (sel.options.length !== tokens.length) {
    sel.innerHTML = '';
    for (const t of tokens) { const o = document.createElement('option'); o.value = o.textContent = t; sel.appendChild(o); }
  }
  sel.value = value;
}

function render(s) {
  if (!s) return;
  const c = $('connect');
  c.textContent = s.loading && !s.connected ? s.loading : s.connect_label;
  c.classList.toggle('connected', s.connected);
  c.disabled = !!s.loading;
  $('swap').textContent = s.swap_label;
  $('swap').disabled = !s.swap_enabled;
  $('from-balance').textContent = 'Balance: ' + s.from_balance;
  $('to-balance').textContent = 'Balance: ' + s.to_balance;
  $('nav-balance').style.display = s.nav_balance ? 'block' : 'none';
  $('nav-balance').textContent = s.nav_balance ? 'Balance: ' + s.nav_balance : '';
  if (document.activeElement !== $('from-input')) $('from-input').value = s.from_input;
  $('to-input').value = s.to_input;
  fillSelect($('from-token'), s.tokens, s.from_token);
  fillSelect($('to-token'), s.tokens, s.to_token);
  const fresh = s.notifications.filter(n => n.at > (window.lastSeenAt || ''));
  for (const n of fresh) toast(n);
  if (s.notifications.length) window.lastSeenAt = s.notifications[s.notifications.length - 1].at;
}

function toast(n) {
  const el = document.createElement('div');
  el.className = 'toast ' + n.kind;
  el.textContent = n.message;
  $('toasts').appendChild(el);
  setTimeout(() => el.remove(), 6000);
}

async function act(name, body) {
  const r = await api('/api/action/' + name, body || {});
  if (r.state) render(r.state); else if (r.error) toast({kind: 'error', message: r.error});
}

$('connect').addEventListener('click', async () => {
  $('connect').disabled = true;
  try { await act('toggle_connection'); } finally { $('connect').disabled = false; }
});
$('swap').addEventListener('click', () => act('execute_swap'));
$('flip').addEventListener('click', () => act('swap_positions'));
$('from-input').addEventListener('input', e => act('from_amount', {value: e.target.value}));
$('from-token').addEventListener('change', e => act('select_token', {position: 'from', symbol: e.target.value}));
$('to-token').addEventListener('change', e => act('select_token', {position: 'to', symbol: e.target.value}));

async function poll() {
  try { const r = await api('/api/state'); render(r.state); } catch {}
}
poll();
setInterval(poll, 5000);
</script>
</body>
</html>
"""
