"""
CLI client for the counter room server.

Supports:
- WebSocket session:  /ws/
- HTTP roster:        GET /api/room/users/

WebSocket protocol:
- Client sends:
  {"type":"join","userId":"<optional>","name":"<optional>"}   (client_claimed servers only)
  {"type":"increment_counter"}
  {"type":"change_name","name":"..."}
  {"type":"ping","timestamp":<ms>}
  {"type":"pong"}                                             (answer to a server probe)
- Server sends:
  {"type":"user_joined","userId":"...","name":"..."}
  {"type":"user_list","users":[{"id":"...","name":"...","count":0}, ...]}
  {"type":"counter_update","userId":"...","count":1}
  {"type":"name_change","userId":"...","name":"..."}
  {"type":"pong","timestamp":<ms>}
  {"type":"ping","timestamp":<ms>}                            (liveness probe)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import Any, Dict, Optional


def _rstrip_slash(s: str) -> str:
    return s[:-1] if s.endswith("/") else s


def _ws_url(ws_base: str) -> str:
    return f"{_rstrip_slash(ws_base)}/ws/"


def _http_url(http_base: str, path: str) -> str:
    return f"{_rstrip_slash(http_base)}{path}"


def _dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _format_roster(users: Any, me: Optional[str]) -> str:
    lines = []
    for user in users or []:
        marker = "*" if user.get("id") == me else " "
        lines.append(f"{marker} {user.get('id')}  {user.get('name')!s:<20}  {user.get('count')}")
    return "\n".join(lines) if lines else "  (empty room)"


async def fetch_roster(http_base: str) -> Dict[str, Any]:
    try:
        import aiohttp  # type: ignore
    except Exception:
        print("Missing dependency: aiohttp. Install with: pip install 'counter-room[client]'", file=sys.stderr)
        raise

    async with aiohttp.ClientSession() as session:
        async with session.get(_http_url(http_base, "/api/room/users/")) as resp:
            text = await resp.text()
            try:
                data = json.loads(text) if text else {}
            except json.JSONDecodeError:
                raise RuntimeError(f"Non-JSON response: {resp.status} {text}")
            if resp.status >= 400:
                raise RuntimeError(f"HTTP {resp.status}: {data}")
            return data


async def ws_session(
    *,
    ws_base: str,
    user_id: Optional[str],
    name: Optional[str],
    increments: int,
    rename: Optional[str],
    watch: bool,
) -> int:
    try:
        import websockets  # type: ignore
    except Exception:
        print("Missing dependency: websockets. Install with: pip install 'counter-room[client]'", file=sys.stderr)
        return 2

    async with websockets.connect(_ws_url(ws_base)) as ws:
        if user_id or name:
            join: Dict[str, Any] = {"type": "join"}
            if user_id:
                join["userId"] = user_id
            if name:
                join["name"] = name
            await ws.send(_dumps(join))

        me: Optional[str] = None
        # The server handles one socket's frames in order, so the pong to a ping sent
        # after our requests arrives only once every reply to them has been sent.
        done_marker: Optional[int] = None

        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=None if watch else 5)
            except asyncio.TimeoutError:
                sys.stderr.write("\n[timed out waiting for the server]\n")
                return 1
            msg = json.loads(raw)
            t = msg.get("type")

            if t == "ping":
                await ws.send(_dumps({"type": "pong", "timestamp": msg.get("timestamp")}))
                continue
            if t == "user_joined" and me is None:
                me = msg.get("userId")
                sys.stderr.write(f"[joined as {me} ({msg.get('name')})]\n")
            elif t == "user_list":
                if watch:
                    print(_format_roster(msg.get("users"), me), flush=True)
                    print("--", flush=True)
            elif t == "counter_update":
                if msg.get("userId") == me:
                    print(f"count={msg.get('count')}", flush=True)
            elif t == "name_change":
                if msg.get("userId") == me:
                    print(f"name={msg.get('name')}", flush=True)
            elif t == "pong":
                sent = msg.get("timestamp")
                if isinstance(sent, (int, float)):
                    sys.stderr.write(f"[latency {int(time.time() * 1000) - int(sent)}ms]\n")
                if done_marker is not None and sent == done_marker and not watch:
                    return 0
            # ignore unknown frames

            if me and done_marker is None:
                for _ in range(increments):
                    await ws.send(_dumps({"type": "increment_counter"}))
                if rename:
                    await ws.send(_dumps({"type": "change_name", "name": rename}))
                done_marker = int(time.time() * 1000)
                await ws.send(_dumps({"type": "ping", "timestamp": done_marker}))


async def main() -> int:
    parser = argparse.ArgumentParser(description="CLI client for the real-time counter room")
    parser.add_argument("--http", default="http://localhost:8000", help="HTTP base, e.g. http://localhost:8000")
    parser.add_argument("--ws", default="ws://localhost:8000", help="WS base, e.g. ws://localhost:8000")
    parser.add_argument("--user-id", help="Identity to claim (client_claimed servers)")
    parser.add_argument("--name", help="Display name to claim with --user-id")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("watch", help="Stay connected and print every roster")

    p_inc = sub.add_parser("increment", help="Increment your counter")
    p_inc.add_argument("--times", type=int, default=1)

    p_name = sub.add_parser("rename", help="Change your display name")
    p_name.add_argument("--name", dest="new_name", required=True)

    sub.add_parser("roster", help="Print the current roster (HTTP)")

    args = parser.parse_args()

    if args.cmd == "roster":
        data = await fetch_roster(args.http)
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return 0

    return await ws_session(
        ws_base=args.ws,
        user_id=args.user_id,
        name=args.name,
        increments=max(args.times, 0) if args.cmd == "increment" else 0,
        rename=args.new_name if args.cmd == "rename" else None,
        watch=args.cmd == "watch",
    )


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
