from __future__ import annotations

import asyncio
import logging
import webbrowser

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from auth import google_oauth2
from auth.callback_server import CallbackListener, html_page
from auth.errors import (
    AuthError,
    ConsentDenied,
    ConsentError,
    ConsentStateMismatch,
    ConsentTimeout,
)
from auth.models import FlowSession, FlowStatus
from auth.token_store import CredentialRecord, TokenStore
from bloggermcp.constants import (
    CALLBACK_PATH,
    CONSENT_TIMEOUT_SECONDS,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_SCOPES,
)

LOGGER = logging.getLogger("bloggermcp.auth")


class ConsentFlow:
    """Runs one interactive authorization-code round trip through the browser.

    The redirect lands on a local listener that resolves a single future with
    the exchanged credential (or the failure). ``run`` races that future
    against the consent timeout and always stops the listener before
    returning.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_store: TokenStore,
        scopes: list[str] | None = None,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        timeout_seconds: float = CONSENT_TIMEOUT_SECONDS,
        use_pkce: bool = True,
        http_client: httpx.AsyncClient | None = None,
        exchange_code_fn=google_oauth2.exchange_code,
        open_browser=webbrowser.open,
        listener_factory=CallbackListener,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_store = token_store
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.host = host
        self.port = port
        self.timeout_seconds = timeout_seconds
        self.use_pkce = use_pkce

        self.session: FlowSession | None = None
        self._result: asyncio.Future | None = None
        self._claimed = False

        self._http_client = http_client
        self._exchange_code_fn = exchange_code_fn
        self._open_browser = open_browser
        self._listener_factory = listener_factory
        self.app = Starlette(
            routes=[Route(CALLBACK_PATH, self._handle_callback, methods=["GET"])]
        )

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{CALLBACK_PATH}"

    @property
    def in_progress(self) -> bool:
        return self.session is not None and self.session.is_pending

    def authorization_url(self, session: FlowSession) -> str:
        challenge = None
        if self.use_pkce:
            challenge = google_oauth2.generate_code_challenge(session.code_verifier)
        return google_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=session.state,
            code_challenge=challenge,
        )

    async def run(self) -> CredentialRecord:
        if self.in_progress:
            raise ConsentError("An authorization flow is already in progress.")

        session = FlowSession()
        self.session = session
        self._claimed = False
        self._result = asyncio.get_running_loop().create_future()
        listener = self._listener_factory(self.app, host=self.host, port=self.port)

        try:
            await listener.start()
            try:
                self._launch_browser(self.authorization_url(session))
                record = await asyncio.wait_for(self._result, timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                session.status = FlowStatus.TIMED_OUT
                raise ConsentTimeout(
                    f"No authorization callback received within {self.timeout_seconds:g} seconds."
                ) from None
            finally:
                await listener.stop()

            await self.token_store.save(record)
            session.status = FlowStatus.COMPLETED
            LOGGER.info("Authorization flow completed")
            return record
        except BaseException:
            if session.is_pending:
                session.status = FlowStatus.FAILED
            raise
        finally:
            LOGGER.debug("Authorization flow ended with status %s", session.status.value)
            self.session = None
            self._result = None

    def _launch_browser(self, url: str) -> None:
        LOGGER.warning("Open this URL in a browser to authorize access: %s", url)
        try:
            opened = self._open_browser(url)
        except Exception as error:
            LOGGER.warning("Could not open a browser automatically: %s", error)
            return
        if opened is False:
            LOGGER.warning("No browser available; open the URL above manually.")

    def _fail(self, error: AuthError) -> None:
        if self.session is not None:
            self.session.status = FlowStatus.FAILED
        if self._result is not None and not self._result.done():
            self._result.set_exception(error)

    async def _handle_callback(self, request: Request) -> Response:
        session = self.session
        if session is None or self._result is None or self._result.done() or self._claimed:
            return html_page(
                "Authorization not active",
                "This authorization request is no longer active. Return to the application.",
                409,
            )

        params = request.query_params
        if params.get("state") != session.state:
            LOGGER.warning("Rejected OAuth callback with mismatched state")
            self._fail(
                ConsentStateMismatch(
                    "Authorization callback state did not match the active flow."
                )
            )
            return html_page(
                "Authorization failed",
                "The authorization response did not match this request.",
                400,
            )

        if params.get("error"):
            LOGGER.warning("Authorization was declined by the provider: %s", params["error"])
            self._fail(ConsentDenied(f"Authorization was declined: {params['error']}."))
            return html_page(
                "Authorization declined",
                "Access was not granted. You can close this window.",
                400,
            )

        code = params.get("code")
        if not code:
            self._fail(ConsentError("Authorization callback did not include a code."))
            return html_page("Authorization failed", "Missing authorization code.", 400)

        self._claimed = True
        try:
            tokens = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=self.redirect_uri,
                code_verifier=session.code_verifier if self.use_pkce else None,
                client=self._http_client,
            )
        except AuthError as error:
            LOGGER.warning("Authorization code exchange failed: %s", error)
            self._fail(error)
            return html_page(
                "Authorization failed",
                "The authorization code could not be exchanged. Return to the application and retry.",
                502,
            )

        if self._result is not None and not self._result.done():
            self._result.set_result(tokens.to_record())
        return html_page(
            "Authorization complete",
            "Access was granted. You can close this window.",
        )
