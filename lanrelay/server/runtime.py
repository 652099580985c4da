from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, Optional

import websockets
from pydantic import ValidationError
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.frames import CloseCode
from websockets.http11 import Request, Response

from lanrelay.core import proto
from lanrelay.core.errors import RelayError
from lanrelay.core.files import FilePayload
from lanrelay.core.relay import Connect, Disconnect, Register, RelayCore, Submit

log = logging.getLogger("lanrelay.server.runtime")

DEFAULT_LISTEN = "0.0.0.0:3000"
DEFAULT_MAX_MESSAGE = 64 * 1024 * 1024


@dataclass(slots=True)
class Connection:
    websocket: ServerConnection
    connection_id: str
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    writer: Optional[asyncio.Task] = None

    async def send(self, frame: Dict[str, Any]) -> None:
        text = json.dumps(frame, separators=(",", ":"))
        await self.websocket.send(text)


class ServerRuntime:
    """Websocket front end for ``RelayCore``.

    Each connection gets a reader (this handler) and a writer task draining
    its outbox, so the core can push without awaiting.
    """

    def __init__(self, config: Dict[str, Any]) -> None:
        self.cfg = config
        self.listen_host, self.listen_port = self._parse_listen(config.get("listen", DEFAULT_LISTEN))
        self.max_message_bytes = int(config.get("max_message_bytes", DEFAULT_MAX_MESSAGE))
        queue_cfg = config.get("queue") or {}

        self.core = RelayCore(
            self,
            max_items=int(queue_cfg.get("max_items", 100)),
            max_bytes=int(queue_cfg.get("max_bytes", 256 * 1024 * 1024)),
        )
        queue_bytes = self.core.backlog.max_bytes
        if queue_bytes and queue_bytes < self.max_message_bytes:
            log.warning(
                "queue.max_bytes (%d) < max_message_bytes (%d): large offline submissions will be refused",
                queue_bytes,
                self.max_message_bytes,
            )
        self._connections: Dict[str, Connection] = {}
        self._ws_server: Optional[Server] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ws_server = await serve(
            self._handle_connection,
            self.listen_host,
            self.listen_port,
            process_request=self._process_request,
            max_size=self.max_message_bytes,
        )
        log.info("lanrelay listening on ws://%s:%d", self.listen_host, self.port)

    async def stop(self) -> None:
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None
        self._connections.clear()

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        if self._ws_server is not None:
            for sock in self._ws_server.sockets:
                return sock.getsockname()[1]
        return self.listen_port

    # ------------------------------------------------------------------
    # Pusher
    # ------------------------------------------------------------------

    def push(self, connection_id: str, frame: Dict[str, Any]) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            log.debug("Dropped %s for gone connection %s", frame.get("type"), connection_id)
            return
        conn.outbox.put_nowait(frame)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path.split("?", 1)[0] != "/health":
            return None
        body = json.dumps({"ok": True, **self.core.stats()})
        response = connection.respond(HTTPStatus.OK, body + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket, connection_id=str(uuid.uuid4()))
        self._connections[conn.connection_id] = conn
        conn.writer = asyncio.create_task(self._writer(conn), name=f"writer-{conn.connection_id}")
        self.core.handle(Connect(conn.connection_id))
        log.info("Connected: %s from %s", conn.connection_id, self._fmt_remote(websocket))
        try:
            async for raw in websocket:
                try:
                    env = proto.Envelope.model_validate_json(raw)
                except ValidationError:
                    self._send_error(conn, "BAD_FRAME", "invalid envelope")
                    continue
                self._dispatch(conn, env)
        except websockets.ConnectionClosed as exc:
            if exc.sent is not None and exc.sent.code == CloseCode.MESSAGE_TOO_BIG:
                log.warning(
                    "Closed %s: frame over max_message_bytes (%d)", conn.connection_id, self.max_message_bytes
                )
        finally:
            self.core.handle(Disconnect(conn.connection_id))
            self._connections.pop(conn.connection_id, None)
            conn.outbox.put_nowait(None)
            with contextlib.suppress(asyncio.CancelledError):
                await conn.writer
            log.info("Disconnected: %s", conn.connection_id)

    async def _writer(self, conn: Connection) -> None:
        while True:
            frame = await conn.outbox.get()
            if frame is None:
                return
            try:
                await conn.send(frame)
            except websockets.ConnectionClosed:
                # frames still in the outbox are lost with the connection
                log.debug("Connection %s closed while sending %s", conn.connection_id, frame.get("type"))
                return

    def _dispatch(self, conn: Connection, envelope: proto.Envelope) -> None:
        type_ = envelope.type
        if type_ == proto.T_REGISTER:
            self._handle_register(conn, envelope)
        elif type_ == proto.T_SUBMIT:
            self._handle_submit(conn, envelope)
        elif type_ == proto.T_LIST_DEVICES:
            self.core.list_directory(conn.connection_id)
        else:
            self._send_error(conn, "UNKNOWN_TYPE", f"unsupported type {type_}")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _handle_register(self, conn: Connection, envelope: proto.Envelope) -> None:
        try:
            req = proto.RegisterPayload.model_validate(envelope.payload)
        except ValidationError:
            req = proto.RegisterPayload()
        registration = self.core.handle(Register(conn.connection_id, req.client_id, req.name))
        entry = registration.entry
        self._send(
            conn,
            proto.T_REGISTERED,
            {
                "connectionId": entry.connection_id,
                "clientId": entry.client_id,
                "name": entry.display_name,
                "flushed": registration.flushed,
                "maxMessageBytes": self.max_message_bytes,
            },
        )

    def _handle_submit(self, conn: Connection, envelope: proto.Envelope) -> None:
        ref = envelope.payload.get("ref") if isinstance(envelope.payload.get("ref"), str) else None
        try:
            req = proto.SubmitPayload.model_validate(envelope.payload)
            payloads = [FilePayload.from_base64(f.name, f.mime_type, f.data) for f in req.files]
        except (ValidationError, ValueError) as exc:
            log.debug("Rejected SUBMIT from %s: %s", conn.connection_id, exc)
            self._send_error(conn, "BAD_FRAME", "malformed SUBMIT payload", ref=ref)
            return

        try:
            result = self.core.handle(
                Submit(
                    payloads,
                    target_client_id=req.to_client_id,
                    target_connection_id=req.to_connection_id,
                    from_display_name=req.from_name,
                )
            )
        except RelayError as exc:
            self._send_error(conn, exc.code, exc.detail, ref=req.ref)
            return
        self._send(conn, proto.T_SUBMIT_RESULT, {**result.to_wire(), "ref": req.ref})

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def _send(self, conn: Connection, type_: str, payload: Dict[str, Any]) -> None:
        self.push(conn.connection_id, proto.build_frame(type_, proto.SERVER_NAME, conn.connection_id, payload))

    def _send_error(self, conn: Connection, code: str, detail: str, *, ref: Optional[str] = None) -> None:
        self._send(conn, proto.T_ERROR, {"code": code, "detail": detail, "ref": ref})

    @staticmethod
    def _parse_listen(value: str) -> tuple[str, int]:
        host, port = value.rsplit(":", 1)
        return host, int(port)

    @staticmethod
    def _fmt_remote(websocket: ServerConnection) -> str:
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["ServerRuntime", "Connection"]
