#!/usr/bin/env python3
"""
Dandy Notifier relay: loopback-only HTTP endpoint that turns JSON requests into desktop notifications.

Speaks a small, hand-framed HTTP subset on 127.0.0.1. One request per
connection, always closed after the response. Three routes:

    GET  /health   plain "OK", no auth
    GET  /version  plain build identifier, no auth
    POST /notify   bearer-token auth, JSON notification payload

Usage:
    python notify_server.py --port 8889 --token-file ~/.dandy-notifier-token
"""

from __future__ import annotations

import argparse
import asyncio
import hmac
import ipaddress
import json
import logging
import os
import signal
from http import HTTPStatus
from pathlib import Path

from action_registry import ActionRegistry
from notification_manager import NotificationManager, PresentationError
from notification_payload import DecodeError, decode_request
from platform_adapters import BrowserOpener, DesktopPresenter, LogPresenter, SubprocessSpawner
from request_framer import MAX_BODY_SIZE, EmptyRequest, FramingError, RawRequest, read_request
from token_store import TokenStore

__version__ = "0.1.0"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8889
BUILD_ID = f"dandy-notifier {__version__}"

logger = logging.getLogger("dandynotifier.server")


class AuthError(Exception):
    """Missing or incorrect bearer token."""


def is_loopback(peer) -> bool:
    """True if a peername tuple belongs to a local client."""
    if not peer:
        return False
    try:
        return ipaddress.ip_address(peer[0]).is_loopback
    except ValueError:
        return False


class RelayHTTPHandler:
    """Async handler for one relay connection: frame, route, respond, close."""

    # (method, path) → handler attribute. Static; never mutated at runtime.
    ROUTES = {
        ("GET", "/health"): "_handle_health",
        ("GET", "/version"): "_handle_version",
        ("POST", "/notify"): "_handle_notify",
    }

    def __init__(
        self,
        manager: NotificationManager,
        auth_token: str,
        build_id: str = BUILD_ID,
        read_timeout: float | None = None,
        max_body_size: int = MAX_BODY_SIZE,
    ):
        self.manager = manager
        self.auth_token = auth_token
        self.build_id = build_id
        self.read_timeout = read_timeout
        self.max_body_size = max_body_size

    def _check_token(self, headers: dict) -> None:
        auth = headers.get("authorization", "")
        # Constant-time comparison
        if not hmac.compare_digest(auth.encode(), f"Bearer {self.auth_token}".encode()):
            raise AuthError("Missing or invalid bearer token" if auth else "Missing Authorization header")

    async def handle_request(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        try:
            if not is_loopback(peer):
                logger.warning("Rejected connection from non-local peer %s", peer)
                return

            try:
                request = await read_request(reader, self.max_body_size, timeout=self.read_timeout)
            except EmptyRequest:
                return
            except FramingError as e:
                logger.info("Framing error from %s: %s", peer, e)
                await self._send_text(writer, e.status, HTTPStatus(e.status).phrase)
                return

            await self._route(request, writer)

        except (asyncio.TimeoutError, ConnectionResetError, BrokenPipeError):
            logger.debug("Connection from %s ended early", peer)
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass

    async def _route(self, request: RawRequest, writer):
        handler_name = self.ROUTES.get((request.method, request.path))
        if handler_name is None:
            logger.debug("No route for %s %s", request.method, request.path)
            await self._send_text(writer, 404, "Not Found")
            return
        await getattr(self, handler_name)(request, writer)

    async def _handle_health(self, request: RawRequest, writer):
        await self._send_text(writer, 200, "OK")

    async def _handle_version(self, request: RawRequest, writer):
        await self._send_text(writer, 200, self.build_id)

    async def _handle_notify(self, request: RawRequest, writer):
        try:
            self._check_token(request.headers)
        except AuthError as e:
            logger.warning("SECURITY: rejected /notify: %s", e)
            await self._send_json(writer, 401, {"error": "Unauthorized", "message": str(e)})
            return

        try:
            payload = decode_request(request.body)
        except DecodeError as e:
            logger.info("Rejected /notify payload: %s", e.message)
            await self._send_json(writer, 400, e.to_dict())
            return

        try:
            self.manager.show_notification(payload)
        except PresentationError as e:
            logger.error("Presentation failed: %s", e)
            await self._send_json(writer, 500, {"error": "Presentation failed", "message": str(e)})
            return

        await self._send_json(writer, 200, {"status": "OK", "message": "Notification sent"})

    async def _send_json(self, writer, status: int, data: dict):
        body = json.dumps(data).encode()
        await self._send_raw(writer, status, body, "application/json")

    async def _send_text(self, writer, status: int, text: str):
        await self._send_raw(writer, status, text.encode("utf-8"), "text/plain; charset=utf-8")

    async def _send_raw(self, writer, status: int, body: bytes, content_type: str):
        reason = HTTPStatus(status).phrase
        headers = [
            f"HTTP/1.1 {status} {reason}",
            f"Content-Type: {content_type}",
            f"Content-Length: {len(body)}",
            "Connection: close",
            "X-Content-Type-Options: nosniff",
        ]
        response = "\r\n".join(headers) + "\r\n\r\n"
        writer.write(response.encode() + body)
        await writer.drain()


class NotificationServer:
    """Owns the listener and wires the handler to the notification manager."""

    def __init__(
        self,
        manager: NotificationManager,
        auth_token: str,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        read_timeout: float | None = None,
    ):
        if not is_loopback((host,)):
            raise ValueError(f"Refusing to listen on non-loopback address {host!r}")
        self.manager = manager
        self.host = host
        self.port = port
        self.http_handler = RelayHTTPHandler(manager, auth_token, read_timeout=read_timeout)
        self._server: asyncio.AbstractServer | None = None

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None or not self._server.sockets:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self.http_handler.handle_request,
            self.host,
            self.port,
            reuse_address=True,
        )
        logger.info("Server listening on http://%s:%d", self.host, self.bound_port)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop accepting connections. In-flight requests finish on their own."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self.manager.registry.shutdown(wait=False)
        logger.info("Server stopped.")


def build_server(
    token_file: Path | str | None = None,
    port: int = DEFAULT_PORT,
    presenter: str = "desktop",
    read_timeout: float | None = None,
) -> NotificationServer:
    """Assemble token store, capabilities, manager and server."""
    token = TokenStore(token_file).load_or_create()
    registry = ActionRegistry(opener=BrowserOpener(), spawner=SubprocessSpawner())
    if presenter == "log":
        surface = LogPresenter()
        manager = NotificationManager(surface, registry)
    else:
        surface = DesktopPresenter()
        manager = NotificationManager(surface, registry)
        surface.set_response_handler(manager.handle_response)
    logger.info("Auth token loaded (%s...)", token[:6])
    return NotificationServer(manager, token, port=port, read_timeout=read_timeout)


def main():
    parser = argparse.ArgumentParser(description="Dandy Notifier relay server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("DANDY_NOTIFIER_PORT", DEFAULT_PORT)),
        help=f"Loopback port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument("--token-file", default=None, help="Path to the auth token file (default: ~/.dandy-notifier-token)")
    parser.add_argument("--presenter", default="desktop", choices=["desktop", "log"], help="Notification surface")
    parser.add_argument("--read-timeout", type=float, default=None, help="Per-connection read timeout in seconds")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    server = build_server(
        token_file=args.token_file,
        port=args.port,
        presenter=args.presenter,
        read_timeout=args.read_timeout,
    )

    loop = asyncio.new_event_loop()

    def shutdown(sig, frame):
        for task in asyncio.all_tasks(loop):
            task.cancel()
        logger.info("Shutting down...")

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            signal.signal(sig, shutdown)
        except (OSError, ValueError):
            pass  # Windows doesn't support SIGTERM

    try:
        loop.run_until_complete(server.serve_forever())
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()
