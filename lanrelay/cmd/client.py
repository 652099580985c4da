from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import shlex
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import websockets
import yaml
from pydantic import ValidationError

from lanrelay.core import proto
from lanrelay.core.files import FilePayload, save_unique

log = logging.getLogger("lanrelay.cmd.client")

IDENTITY_FILE = "identity.yaml"


def load_identity(state_dir: Path, name: Optional[str] = None) -> Dict[str, str]:
    """Load (or create) the persisted clientId and display name.

    The clientId survives restarts so queued files find this device again.
    """
    path = state_dir / IDENTITY_FILE
    data: Dict[str, Any] = {}
    if path.exists():
        data = yaml.safe_load(path.read_text()) or {}
    identity = {
        "client_id": str(data.get("client_id") or uuid.uuid4()),
        "name": proto.normalize_name(name or data.get("name")),
    }
    if identity != data:
        save_identity(state_dir, identity)
    return identity


def save_identity(state_dir: Path, identity: Dict[str, str]) -> None:
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / IDENTITY_FILE).write_text(yaml.safe_dump(identity, sort_keys=True))


class ClientApp:
    def __init__(self, server_url: str, state_dir: Path, identity: Dict[str, str]) -> None:
        self.server_url = server_url
        self.state_dir = state_dir
        self.client_id = identity["client_id"]
        self.name = identity["name"]
        self.download_dir = state_dir / "downloads"

        self.ws: Optional[websockets.ClientConnection] = None
        self.devices: List[Dict[str, Any]] = []
        # clientId -> last name seen this session, online or not
        self.known: Dict[str, str] = {}
        self.max_message_bytes: Optional[int] = None
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        async with websockets.connect(self.server_url, max_size=None) as ws:
            self.ws = ws
            await self._send_register()
            receiver = asyncio.create_task(self._rx_loop())
            try:
                await self._command_loop()
            finally:
                self.stop_event.set()
                receiver.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await receiver

    async def _command_loop(self) -> None:
        loop = asyncio.get_running_loop()
        print("lanrelay client ready. Commands: /list, /send <target>[,<target>...] <path>..., /name <new name>, /quit")
        while not self.stop_event.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or self.stop_event.is_set():
                break
            line = line.strip()
            if line:
                await self._handle_command(line)

    async def _handle_command(self, line: str) -> None:
        try:
            parts = shlex.split(line)
        except ValueError as exc:
            print(f"Cannot parse command: {exc}")
            return
        cmd = parts[0]
        try:
            if cmd == "/list":
                await self._send_frame(proto.T_LIST_DEVICES, {})
            elif cmd == "/send" and len(parts) >= 3:
                await self._cmd_send(parts[1].split(","), [Path(p).expanduser() for p in parts[2:]])
            elif cmd == "/name" and len(parts) >= 2:
                await self._cmd_rename(line.split(" ", 1)[1])
            elif cmd in {"/quit", "/exit"}:
                self.stop_event.set()
            else:
                print("Unknown command")
        except websockets.ConnectionClosed:
            print("Connection to relay lost.")
            self.stop_event.set()

    async def _rx_loop(self) -> None:
        assert self.ws is not None
        try:
            async for raw in self.ws:
                try:
                    env = proto.Envelope.model_validate_json(raw)
                except ValidationError:
                    log.warning("Dropped invalid frame")
                    continue
                self._handle_incoming(env)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.stop_event.set()

    def _handle_incoming(self, env: proto.Envelope) -> None:
        typ = env.type
        payload = env.payload
        if typ == proto.T_REGISTERED:
            log.info("Registered as %s (%s)", payload.get("name"), payload.get("clientId"))
            self.max_message_bytes = payload.get("maxMessageBytes") or None
            if payload.get("flushed"):
                print(f"[queue] {payload['flushed']} file(s) were waiting for you")
        elif typ == proto.T_DEVICES:
            self._handle_devices(payload)
        elif typ == proto.T_FILE_TRANSFER:
            self._handle_file_transfer(payload)
        elif typ == proto.T_SUBMIT_RESULT:
            summary = ", ".join(f"{d['name']} ({d['status']})" for d in payload.get("delivered", []))
            print(f"{self._label(payload.get('toClientId') or payload.get('ref'))}: {summary}")
        elif typ == proto.T_ERROR:
            print(f"ERROR ({payload.get('code')}): {payload.get('detail')}")
        else:
            log.debug("Unhandled frame %s", typ)

    async def _send_register(self) -> None:
        await self._send_frame(proto.T_REGISTER, {"clientId": self.client_id, "name": self.name})

    async def _cmd_rename(self, new_name: str) -> None:
        self.name = proto.normalize_name(new_name)
        save_identity(self.state_dir, {"client_id": self.client_id, "name": self.name})
        await self._send_register()
        print(f"Device name updated: {self.name}")

    async def _cmd_send(self, targets: List[str], paths: List[Path]) -> None:
        missing = [p for p in paths if not p.is_file()]
        if missing:
            print(f"File not found: {', '.join(str(p) for p in missing)}")
            return
        wanted = [t for t in (t.strip() for t in targets) if t]
        resolved = [(t, self._resolve_target(t)) for t in wanted]
        unknown = [t for t, client_id in resolved if client_id is None]
        if unknown:
            print(f"Unknown device: {', '.join(unknown)}. Run /list to see who is around.")
            return

        files = [FilePayload.from_path(p).to_entry() for p in paths]
        # one SUBMIT per target so each gets its own result
        for _, client_id in resolved:
            payload = {"files": files, "toClientId": client_id, "fromName": self.name, "ref": client_id}
            text = self._encode_frame(proto.T_SUBMIT, payload)
            limit = self.max_message_bytes
            if limit and len(text.encode("utf-8")) > limit:
                print(f"Too large to send: {len(text.encode('utf-8'))} bytes encoded, relay accepts {limit}")
                return
            await self._send_text(text)

    def _resolve_target(self, target: str) -> Optional[str]:
        """Map a clientId or display name seen this session to a clientId."""
        for device in self.devices:
            if target in (device.get("clientId"), device.get("name")) and device.get("clientId"):
                return device["clientId"]
        if target in self.known:
            return target
        for client_id, name in self.known.items():
            if name == target:
                return client_id
        return None

    def _encode_frame(self, type_: str, payload: Dict[str, Any]) -> str:
        frame = proto.build_frame(type_, self.client_id, proto.SERVER_NAME, payload)
        return json.dumps(frame, separators=(",", ":"))

    async def _send_text(self, text: str) -> None:
        assert self.ws is not None
        await self.ws.send(text)

    async def _send_frame(self, type_: str, payload: Dict[str, Any]) -> None:
        await self._send_text(self._encode_frame(type_, payload))

    def _handle_devices(self, payload: Dict[str, Any]) -> None:
        self.devices = [d for d in payload.get("devices", []) if d.get("clientId") != self.client_id]
        for device in self.devices:
            if device.get("clientId"):
                self.known[device["clientId"]] = device.get("name") or device["clientId"]
        if not self.devices:
            print("No other devices online.")
            return
        names = ", ".join(f"{d.get('name')} [{d.get('clientId') or d.get('connectionId')}]" for d in self.devices)
        print(f"Online: {names}")

    def _handle_file_transfer(self, payload: Dict[str, Any]) -> None:
        name = payload.get("fileName") or "download.bin"
        try:
            data = proto.b64decode(payload.get("fileData") or "")
        except ValueError as exc:
            log.warning("Dropped undecodable file %s: %s", name, exc)
            return
        dest = save_unique(self.download_dir, name, data)
        print(f"[file] {name} from {payload.get('from')} saved -> {dest}")

    def _label(self, client_id: Optional[str]) -> str:
        for device in self.devices:
            if device.get("clientId") == client_id:
                return device.get("name") or client_id
        return client_id or "?"


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="lanrelay client")
    parser.add_argument("--server", required=True, help="ws://host:port of the relay")
    parser.add_argument("--name", default=None, help="Display name (remembered for next time)")
    parser.add_argument("--state-dir", default="~/.lanrelay", help="Directory for identity and downloads")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    state_dir = Path(args.state_dir).expanduser()
    identity = load_identity(state_dir, args.name)

    app = ClientApp(args.server, state_dir, identity)
    await app.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
