"""
WebSocket connection to one physical gateway.

A GatewayLink owns at most one socket. It runs the challenge/connect handshake,
correlates `req`/`res` frames through the collector-wide RequestTracker and hands
unsolicited `event` frames to its owner. Several logical agents may share one link;
the link itself knows nothing about them beyond the owner's callbacks.

Frames are JSON text:
  {"type": "event", "event": ..., "payload": ...}
  {"type": "req", "id": ..., "method": ..., "params": {...}}
  {"type": "res", "id": ..., "ok": bool, "payload": ... | "error": {...}}
"""
import asyncio
import json
import logging
from typing import Any, Callable, Optional

import aiohttp

from fleetwatch.config import (
    CLIENT_ID, CLIENT_MODE, CLIENT_VERSION, PROTOCOL_VERSION,
    RECONNECT_DELAY, RPC_TIMEOUT,
)
from fleetwatch.gateway.requests import RequestTracker
from fleetwatch.models import GatewayKey, LogicalAgent

logger = logging.getLogger(__name__)

# Link lifecycle states
DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"
ERROR = "error"

# on_status(link, state, error, snapshot)
StatusCallback = Callable[["GatewayLink", str, Optional[str], Optional[dict]], None]
# on_event(link, event_name, payload)
EventCallback = Callable[["GatewayLink", str, Any], None]


class GatewayLink:
    def __init__(
        self,
        key: GatewayKey,
        tracker: RequestTracker,
        on_status: StatusCallback,
        on_event: EventCallback,
        platform: str = "linux",
    ) -> None:
        self.key = key
        self.tracker = tracker
        self.on_status = on_status
        self.on_event = on_event
        self.platform = platform
        self.state = DISCONNECTED
        self.agents: list[LogicalAgent] = []
        self.raw_data: dict[str, Any] = {}
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._connect_req_id: Optional[str] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<GatewayLink {self.key.label} state={self.state} agents={len(self.agents)}>"

    @property
    def connected(self) -> bool:
        return self.state == CONNECTED

    # ─────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────

    def connect(self) -> None:
        """Open (or re-open) the socket. Any previous socket is dropped first."""
        if self._closed:
            return
        self._reconnect_timer = None
        old_ws, self._ws = self._ws, None
        if old_ws is not None and not old_ws.closed:
            asyncio.ensure_future(old_ws.close())
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self.state = CONNECTING
        self._reader = asyncio.ensure_future(self._run())

    async def close(self) -> None:
        """Stop for good: no reconnect, socket and HTTP session released."""
        self._closed = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        if self._session is not None:
            await self._session.close()
            self._session = None
        self.state = DISCONNECTED

    async def _run(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        try:
            ws = await self._session.ws_connect(self.key.url)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            self._connection_lost(None, e)
            return

        self._ws = ws
        logger.info(f"[{self.key.label}] socket open, waiting for challenge")
        error: Optional[BaseException] = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError) as e:
            error = e
        except Exception as e:
            logger.exception(f"[{self.key.label}] frame handling failed, dropping socket")
            error = e

        if self._ws is ws:
            self._ws = None
            if not ws.closed:
                await ws.close()
            self._connection_lost(ws.close_code, error)

    def _connection_lost(self, code: Optional[int], exc: Optional[BaseException]) -> None:
        if self._closed:
            return
        if exc is not None:
            self.state = ERROR
            reason = str(exc) or type(exc).__name__
        else:
            self.state = DISCONNECTED
            reason = f"disconnected (code {code if code is not None else 1006})"
        self._connect_req_id = None
        logger.warning(f"[{self.key.label}] {reason}")
        self.on_status(self, self.state, reason, None)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(RECONNECT_DELAY, self.connect)
        logger.info(f"[{self.key.label}] reconnect in {RECONNECT_DELAY:g}s")

    # ─────────────────────────────────────────────
    # Frames
    # ─────────────────────────────────────────────

    async def _send_frame(self, frame: dict) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            return False
        try:
            await ws.send_str(json.dumps(frame))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.debug(f"[{self.key.label}] send failed: {e}")
            return False
        return True

    async def send(self, method: str, params: Optional[dict] = None) -> Any:
        """
        Issue one RPC and wait for its payload.

        Returns None when the link is not connected (nothing is sent), when the
        gateway answers ok=false, or when no answer arrives within RPC_TIMEOUT.
        """
        if self.state != CONNECTED:
            return None
        req_id = self.tracker.next_id()
        future = self.tracker.register(req_id, RPC_TIMEOUT)
        frame = {"type": "req", "id": req_id, "method": method, "params": params or {}}
        if not await self._send_frame(frame):
            self.tracker.discard(req_id)
        return await future

    async def handle_text(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except (TypeError, ValueError, RecursionError):
            logger.debug(f"[{self.key.label}] discarding non-JSON frame")
            return
        if not isinstance(frame, dict):
            logger.debug(f"[{self.key.label}] discarding non-object frame")
            return
        await self.handle_frame(frame)

    async def handle_frame(self, frame: dict) -> None:
        kind = frame.get("type")
        if kind == "event":
            event = frame.get("event")
            if event == "connect.challenge":
                await self._send_connect()
            elif isinstance(event, str):
                self.on_event(self, event, frame.get("payload"))
            return

        if kind == "res":
            payload = frame.get("payload")
            res_id = frame.get("id")
            is_hello = isinstance(payload, dict) and payload.get("type") == "hello-ok"
            is_connect = res_id is not None and res_id == self._connect_req_id
            if is_connect or (frame.get("ok") and is_hello):
                self._handle_connect_response(frame, is_hello)
                return
            self.tracker.resolve(res_id, bool(frame.get("ok")), payload)

    async def _send_connect(self) -> None:
        req_id = self.tracker.next_id()
        self._connect_req_id = req_id
        await self._send_frame({
            "type": "req",
            "id": req_id,
            "method": "connect",
            "params": {
                "minProtocol": PROTOCOL_VERSION,
                "maxProtocol": PROTOCOL_VERSION,
                "client": {
                    "id": CLIENT_ID,
                    "version": CLIENT_VERSION,
                    "platform": self.platform,
                    "mode": CLIENT_MODE,
                },
                "auth": {"token": self.key.token},
            },
        })

    def _handle_connect_response(self, frame: dict, is_hello: bool) -> None:
        self._connect_req_id = None
        if frame.get("ok") and is_hello:
            self.state = CONNECTED
            snapshot = frame["payload"].get("snapshot") or {}
            logger.info(f"[{self.key.label}] connected ({len(self.agents)} agent(s))")
            self.on_status(self, CONNECTED, None, snapshot)
            return
        if frame.get("ok"):
            logger.debug(f"[{self.key.label}] unexpected connect payload, ignoring")
            return
        err = frame.get("error")
        message = (err.get("message") if isinstance(err, dict) else err) or "connect rejected"
        logger.error(f"[{self.key.label}] connect error: {message}")
        self.on_status(self, self.state, str(message), None)
