"""
Run a host or listener peer against a signaling server.

    podcast-peer host SESSION_ID --server ws://localhost:8000 --name "Ada"
    podcast-peer listen SESSION_ID --server ws://localhost:8000

Both roles read the Session Directory directly (DIRECTORY_BACKEND and
FIREBASE_PROJECT_ID from the environment or .env) and exchange signaling
through the server's WebSocket bridge. Ctrl-C ends the session (host) or
leaves it (listener).
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from dotenv import load_dotenv

from adapters.rtc.aiortc_peer import AiortcPeerConnectionFactory, MediaSinkPlayback, MicrophoneSource
from config import AppConfig
from directory.errors import DirectoryError
from directory.service import SessionDirectory
from observability.logger import log_event
from server.app import build_document_store
from session.errors import SessionSetupError
from session.host_session import HostSessionManager
from session.listener_session import ListenerSessionManager
from signaling.remote_store import WebSocketSignalingStore


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="podcast-peer")
    parser.add_argument("role", choices=("host", "listen"))
    parser.add_argument("session_id")
    parser.add_argument("--server", default="ws://localhost:8000")
    parser.add_argument("--name", default=None, help="display name")
    parser.add_argument("--device", default="default", help="FFmpeg capture device")
    parser.add_argument("--format", dest="fmt", default="pulse", help="FFmpeg capture format")
    parser.add_argument("--record-dir", default=None, help="write inbound audio here")
    return parser


async def _wait_for_interrupt() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await stop.wait()


async def run(args: argparse.Namespace, config: AppConfig) -> int:
    directory = SessionDirectory(build_document_store(config))
    session = await directory.require(args.session_id)

    store = WebSocketSignalingStore(args.server, session.room_id)
    await store.connect()
    ice_servers = store.ice_servers or config.ice_servers()

    common = {
        "session": session,
        "directory": directory,
        "store": store,
        "peer_factory": AiortcPeerConnectionFactory(),
        "media_source": MicrophoneSource(device=args.device, fmt=args.fmt),
        "playback": MediaSinkPlayback(record_dir=args.record_dir),
        "ice_servers": ice_servers,
        "negotiation_timeout_ms": config.negotiation_timeout_ms,
    }

    try:
        if args.role == "host":
            SessionDirectory.authorize_host(session, args.name or session.host_name)
            host = HostSessionManager(
                host_name=args.name,
                cleanup_grace_s=config.signaling_cleanup_grace_s,
                **common,
            )
            host.start()
            await host.open()
            await _wait_for_interrupt()
            await host.end()
            # room removal needs the socket; keep it open through the grace delay
            if host.cleanup_task is not None:
                await host.cleanup_task
        else:
            listener = ListenerSessionManager(display_name=args.name, **common)
            listener.start()
            await listener.join()
            await _wait_for_interrupt()
            await listener.leave()
    except (DirectoryError, SessionSetupError) as exc:
        log_event({
            "event_type": "PEER_START_FAILED",
            "role": args.role,
            "session_id": args.session_id,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        return 1
    finally:
        await store.close()
    return 0


def main() -> None:
    load_dotenv()
    args = _parser().parse_args()
    raise SystemExit(asyncio.run(run(args, AppConfig.load_from_env())))


if __name__ == "__main__":
    main()
