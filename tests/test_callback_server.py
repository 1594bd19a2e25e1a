import socket

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.routing import Route

from auth.callback_server import CallbackListener, html_page
from auth.errors import ConsentError


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _can_bind(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def _app() -> Starlette:
    async def callback(request: Request):
        return html_page("Authorization complete", f"state={request.query_params.get('state')}")

    return Starlette(routes=[Route("/oauth/callback", callback, methods=["GET"])])


def test_html_page_escapes_message() -> None:
    response = html_page("Failed", "<script>alert(1)</script>", 400)

    assert response.status_code == 400
    assert b"<script>" not in response.body
    assert b"&lt;script&gt;" in response.body


@pytest.mark.asyncio
async def test_listener_refuses_busy_port() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        listener = CallbackListener(_app(), host="127.0.0.1", port=sock.getsockname()[1])

        with pytest.raises(ConsentError, match="already in use") as excinfo:
            await listener.start()

    assert excinfo.value.step == "listen"
    assert listener.running is False


@pytest.mark.asyncio
async def test_second_listener_on_same_port_raises_instead_of_exiting() -> None:
    port = _free_port()
    first = CallbackListener(_app(), host="127.0.0.1", port=port)
    second = CallbackListener(_app(), host="127.0.0.1", port=port)

    await first.start()
    try:
        with pytest.raises(ConsentError, match="already in use"):
            await second.start()

        assert second.running is False
        assert first.running is True
        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://127.0.0.1:{port}/oauth/callback")
        assert response.status_code == 200
    finally:
        await first.stop()


@pytest.mark.asyncio
async def test_listener_serves_callback_and_releases_port() -> None:
    port = _free_port()
    listener = CallbackListener(_app(), host="127.0.0.1", port=port)

    await listener.start()
    try:
        assert listener.running is True
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"http://127.0.0.1:{port}/oauth/callback", params={"state": "abc"}
            )
    finally:
        await listener.stop()

    assert response.status_code == 200
    assert "state=abc" in response.text
    assert listener.running is False
    assert _can_bind(port) is True


@pytest.mark.asyncio
async def test_stop_without_start_is_noop() -> None:
    listener = CallbackListener(_app(), host="127.0.0.1", port=_free_port())

    await listener.stop()

    assert listener.running is False
