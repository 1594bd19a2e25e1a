from __future__ import annotations

import asyncio
import html
import logging
import socket

import uvicorn
from starlette.responses import HTMLResponse
from starlette.types import ASGIApp

from auth.errors import ConsentError

LOGGER = logging.getLogger("bloggermcp.auth")

_PAGE_TEMPLATE = """<!doctype html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; margin: 3em;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def html_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    content = _PAGE_TEMPLATE.format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(content, status_code=status_code)


class CallbackListener:
    """Serves the OAuth redirect app on a local port for the length of one flow."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        host: str,
        port: int,
        startup_poll_seconds: float = 0.05,
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._startup_poll_seconds = startup_poll_seconds
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None
        self._socket: socket.socket | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError as error:
            sock.close()
            raise ConsentError(
                f"Port {self.port} is already in use; cannot receive the OAuth callback.",
                step="listen",
            ) from error
        return sock

    async def start(self) -> None:
        if self.running:
            raise ConsentError("Callback listener is already running.", step="listen")

        sock = self._bind_socket()
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._socket = sock
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                self._release()
                raise ConsentError(
                    f"Callback listener failed to start on {self.host}:{self.port}.",
                    step="listen",
                )
            await asyncio.sleep(self._startup_poll_seconds)

        LOGGER.info("OAuth callback listener started on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return

        self._server.should_exit = True
        try:
            await asyncio.shield(self._task)
        finally:
            self._release()
        LOGGER.info("OAuth callback listener stopped on %s:%s", self.host, self.port)

    def _release(self) -> None:
        if self._socket is not None:
            self._socket.close()
        self._socket = None
        self._server = None
        self._task = None
