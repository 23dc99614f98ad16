"""
SignalingStore over the server's /ws/signaling/{roomId} bridge.

Lets a host or listener process run against a remote signaling server. The
store is bound to one room: paths must live under rooms/{roomId} and are sent
relative to it.

Connection lifecycle:
- connect() opens the socket, reads SESSION_INIT and starts the receive loop.
- Subscribing is synchronous for callers; the subscribe op is sent in the
  background and the handler only runs once the server starts delivering.
- When the socket drops, pending requests fail with SignalingConnectionError.
  There is no reconnect.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Callable, Mapping

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed

from observability.logger import BoundLogger
from protocol.paths import join_path, split_path
from signaling.store import ChildHandler, Unsubscribe, ValueHandler
from spec import SIGNALING_ROOT


class SignalingConnectionError(RuntimeError):
    """The bridge rejected an op or the connection is gone."""


class WebSocketSignalingStore:
    def __init__(self, server_url: str, room_id: str, *, root: str = SIGNALING_ROOT) -> None:
        self.url = f"{server_url.rstrip('/')}/ws/signaling/{room_id}"
        self.room_id = room_id
        self.ice_servers: list[dict[str, Any]] = []
        self._prefix = split_path(join_path(root, room_id))

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._handlers: dict[str, Callable[..., None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._req_ids = itertools.count(1)
        self._sub_ids = itertools.count(1)
        self.log = BoundLogger(room_id=room_id)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self._ws = await ws_connect(self.url, max_size=2**22)
        init = json.loads(await self._ws.recv())
        if init.get("type") != "SESSION_INIT":
            await self._ws.close()
            raise SignalingConnectionError(f"unexpected greeting: {init.get('type')!r}")
        self.ice_servers = list(init.get("ice_servers") or [])
        self._recv_task = asyncio.create_task(self._recv_loop())
        self.log({"event_type": "SIGNALING_REMOTE_CONNECTED", "url": self.url})

    async def close(self) -> None:
        if self._recv_task is not None and not self._recv_task.done():
            self._recv_task.cancel()
        self._recv_task = None
        ws = self._ws
        self._ws = None
        if ws is not None:
            await ws.close()
        self._fail_pending("closed")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(SignalingConnectionError(reason))
        self._pending.clear()

    async def _recv_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as exc:
                    self.log({"event_type": "JSON_DECODE_ERROR", "error": str(exc)})
                    continue
                self._handle_message(message)
        except ConnectionClosed as exc:
            self.log({"event_type": "SIGNALING_REMOTE_CLOSED", "reason": str(exc)})
        finally:
            self._fail_pending("connection_closed")

    def _handle_message(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "result":
            future = self._pending.pop(message.get("req"), None)
            if future is not None and not future.done():
                future.set_result(message)
            return

        if kind == "event":
            handler = self._handlers.get(message.get("sub"))
            if handler is None:
                return
            if message.get("event") == "value":
                handler(message.get("value"))
            else:
                handler(message.get("key"), message.get("value"))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _relative(self, path: str) -> str:
        segments = split_path(path)
        if segments[: len(self._prefix)] != self._prefix:
            raise SignalingConnectionError(f"path outside room {self.room_id}: {path}")
        return "/".join(segments[len(self._prefix):])

    async def _request(self, op: str, path: str | None, **fields: Any) -> dict[str, Any]:
        if self._ws is None:
            raise SignalingConnectionError("not connected")
        req = next(self._req_ids)
        message: dict[str, Any] = {"op": op, "req": req, **fields}
        if path is not None:
            message["path"] = self._relative(path)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[req] = future
        await self._ws.send(json.dumps(message))
        response = await future
        if not response.get("ok"):
            raise SignalingConnectionError(f"{op} {path}: {response.get('error')}")
        return response

    async def set(self, path: str, value: Any) -> None:
        await self._request("set", path, value=value)

    async def push(self, path: str, value: Any) -> str:
        response = await self._request("push", path, value=value)
        return response["key"]

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        await self._request("update", path, values=dict(values))

    async def remove(self, path: str) -> None:
        await self._request("remove", path)

    async def get(self, path: str) -> Any:
        response = await self._request("get", path)
        return response.get("value")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_child_added(self, path: str, handler: ChildHandler) -> Unsubscribe:
        return self._subscribe("child_added", path, handler)

    def on_child_removed(self, path: str, handler: ChildHandler) -> Unsubscribe:
        return self._subscribe("child_removed", path, handler)

    def on_value(self, path: str, handler: ValueHandler) -> Unsubscribe:
        return self._subscribe("value", path, handler)

    def _subscribe(self, event: str, path: str, handler: Callable[..., None]) -> Unsubscribe:
        self._relative(path)
        sub_id = f"s{next(self._sub_ids)}"
        self._handlers[sub_id] = handler
        self._spawn(self._request("subscribe", path, sub=sub_id, event=event))

        def unsubscribe() -> None:
            if self._handlers.pop(sub_id, None) is not None and self._ws is not None:
                self._spawn(self._request("unsubscribe", None, sub=sub_id))

        return unsubscribe

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log({
                "event_type": "SIGNALING_SUBSCRIBE_FAILED",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
