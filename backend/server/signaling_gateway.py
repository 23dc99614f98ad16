"""
Signaling gateway.

Bridges one WebSocket client to one room of the server's SignalingStore.

Responsibilities:
- Decode inbound JSON ops and run them against a room-scoped SignalingChannel
- Register and release subscriptions on behalf of the client
- Queue subscription deliveries for the route's send pump

Wire format (client -> server):
    {"op": "set"|"push"|"update"|"remove"|"get", "req": 1, "path": "...", "value": ...}
    {"op": "update", "req": 2, "path": "", "values": {...}}
    {"op": "subscribe", "req": 3, "sub": "s1", "event": "child_added", "path": "..."}
    {"op": "unsubscribe", "req": 4, "sub": "s1"}

Server -> client:
    {"type": "SESSION_INIT", "room_id": ..., "ice_servers": [...]}
    {"type": "result", "req": 1, "ok": true, "key"?: ..., "value"?: ...}
    {"type": "event", "sub": "s1", "event": "child_added", "key": ..., "value": ...}

Paths are relative to rooms/{roomId}; a client can never address another room.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from observability.logger import BoundLogger
from protocol.paths import InvalidPathError, split_path
from signaling.channel import SignalingChannel
from signaling.store import SignalingStore, Unsubscribe


SUBSCRIPTION_EVENTS = ("child_added", "child_removed", "value")
WRITE_OPS = ("set", "push", "update", "remove", "get")


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        JSON messages to send to the client, in order
    """
    outbound_json: tuple[dict[str, Any], ...] = ()


def _result(req: Any, ok: bool, **fields: Any) -> GatewayResult:
    return GatewayResult(outbound_json=({"type": "result", "req": req, "ok": ok, **fields},))


# ------------------------------------------------------------------
# SignalingGateway
# ------------------------------------------------------------------

class SignalingGateway:
    """One gateway == one WebSocket client in one room."""

    def __init__(
        self,
        *,
        store: SignalingStore,
        room_id: str,
        ice_servers: Sequence[dict[str, Any]] = (),
    ) -> None:
        self.room_id = room_id
        self._channel = SignalingChannel(store, room_id)
        self._ice_servers = list(ice_servers)
        self._subscriptions: dict[str, Unsubscribe] = {}
        self.outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.log = BoundLogger(room_id=room_id)

    @property
    def subscription_ids(self) -> set[str]:
        return set(self._subscriptions)

    async def on_ws_connect(self) -> GatewayResult:
        self.log({"event_type": "SIGNALING_CLIENT_CONNECTED"})
        return GatewayResult(outbound_json=({
            "type": "SESSION_INIT",
            "room_id": self.room_id,
            "ice_servers": self._ice_servers,
        },))

    async def on_ws_disconnect(self, reason: str | None = None) -> GatewayResult:
        for unsubscribe in self._subscriptions.values():
            unsubscribe()
        released = len(self._subscriptions)
        self._subscriptions.clear()
        self.log({
            "event_type": "SIGNALING_CLIENT_DISCONNECTED",
            "reason": reason,
            "released_subscriptions": released,
        })
        return GatewayResult()

    async def on_json_message(self, payload: str) -> GatewayResult:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            self.log({
                "event_type": "JSON_DECODE_ERROR",
                "error": str(exc),
                "payload_preview": payload[:100],
            })
            return GatewayResult()

        if not isinstance(data, dict):
            return _result(None, False, error="malformed")

        op = data.get("op")
        req = data.get("req")

        if op == "unsubscribe":
            return self._unsubscribe(req, data.get("sub"))

        path = data.get("path", "")
        if not isinstance(path, str):
            return _result(req, False, error="invalid_path")
        try:
            split_path(path)
        except InvalidPathError as exc:
            self.log({"event_type": "SIGNALING_INVALID_PATH", "op": op, "path": path, "error": str(exc)})
            return _result(req, False, error="invalid_path")

        if op == "subscribe":
            return self._subscribe(req, data.get("sub"), data.get("event"), path)
        if op in WRITE_OPS:
            return await self._write(op, req, path, data)

        self.log({"event_type": "UNKNOWN_MESSAGE_TYPE", "op": op})
        return _result(req, False, error="unknown_op")

    # ------------------------------------------------------------------
    # Ops
    # ------------------------------------------------------------------

    async def _write(self, op: str, req: Any, path: str, data: dict[str, Any]) -> GatewayResult:
        if op == "set":
            ok = await self._channel.write_value(path, data.get("value"))
            return _result(req, ok, **({} if ok else {"error": "write_failed"}))

        if op == "push":
            key = await self._channel.push_value(path, data.get("value"))
            if key is None:
                return _result(req, False, error="write_failed")
            return _result(req, True, key=key)

        if op == "update":
            values = data.get("values")
            if not isinstance(values, dict):
                return _result(req, False, error="malformed")
            ok = await self._channel.update_values(values, path)
            return _result(req, ok, **({} if ok else {"error": "write_failed"}))

        if op == "remove":
            ok = await self._channel.remove_value(path)
            return _result(req, ok, **({} if ok else {"error": "write_failed"}))

        return _result(req, True, value=await self._channel.read_value(path))

    def _subscribe(self, req: Any, sub_id: Any, event: Any, path: str) -> GatewayResult:
        if not isinstance(sub_id, str) or not sub_id:
            return _result(req, False, error="malformed")
        if event not in SUBSCRIPTION_EVENTS:
            return _result(req, False, error="unknown_event")
        if sub_id in self._subscriptions:
            return _result(req, False, error="duplicate_subscription")

        if event == "value":
            unsubscribe = self._channel.subscribe_value(path, self._value_forwarder(sub_id))
        elif event == "child_added":
            unsubscribe = self._channel.subscribe_child_added(
                path, self._child_forwarder(sub_id, "child_added")
            )
        else:
            unsubscribe = self._channel.subscribe_child_removed(
                path, self._child_forwarder(sub_id, "child_removed")
            )

        self._subscriptions[sub_id] = unsubscribe
        return _result(req, True)

    def _unsubscribe(self, req: Any, sub_id: Any) -> GatewayResult:
        unsubscribe = self._subscriptions.pop(sub_id, None) if isinstance(sub_id, str) else None
        if unsubscribe is None:
            return _result(req, False, error="unknown_subscription")
        unsubscribe()
        return _result(req, True)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _value_forwarder(self, sub_id: str) -> Callable[[Any], None]:
        def forward(value: Any) -> None:
            self.outbound.put_nowait({
                "type": "event",
                "sub": sub_id,
                "event": "value",
                "value": value,
            })
        return forward

    def _child_forwarder(self, sub_id: str, event: str) -> Callable[[str, Any], None]:
        def forward(key: str, value: Any) -> None:
            self.outbound.put_nowait({
                "type": "event",
                "sub": sub_id,
                "event": event,
                "key": key,
                "value": value,
            })
        return forward
