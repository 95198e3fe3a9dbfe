"""Loopback HTTP server that receives the hosted-UI redirect.

Command-line hosts have no address bar. :class:`CallbackServer` binds the
host and port of ``redirect_sign_in`` and hands the first request's full
URL to :meth:`~authflow.auth.context.AuthContext.handle_redirect`. Only
the authorization-code grant works this way: browsers never send the URL
fragment that carries implicit-grant tokens.
"""

from __future__ import annotations

import asyncio
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from authflow.exceptions import OAuthError

DEFAULT_CALLBACK_TIMEOUT = 120.0


class CallbackServer:
    """Single-request server bound to the redirect URI.

    Use as a context manager so the port is bound before the browser is
    sent to the hosted UI::

        with CallbackServer(options.oauth.redirect_sign_in) as server:
            context.federated_sign_in()
            url = await server.wait()
    """

    def __init__(self, redirect_uri: str, timeout: float = DEFAULT_CALLBACK_TIMEOUT) -> None:
        parts = urlsplit(redirect_uri)
        if parts.scheme != "http" or parts.hostname not in ("localhost", "127.0.0.1"):
            raise OAuthError(
                f"Cannot receive the redirect on '{redirect_uri}': "
                "a loopback http:// redirect URI is required"
            )
        self._host = parts.hostname
        self._port = parts.port if parts.port is not None else 80
        self._timeout = timeout
        self._server: Optional[HTTPServer] = None
        self._received: Optional[str] = None

    def __enter__(self) -> CallbackServer:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def port(self) -> int:
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    def start(self) -> None:
        result = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                result._received = f"http://{result._host}:{result.port}{self.path}"
                params = parse_qs(urlsplit(self.path).query)
                if "error" in params:
                    body = f"Authorization failed: {params['error'][0]}"
                    error_desc = params.get("error_description", [""])[0]
                    if error_desc:
                        body += f" - {error_desc}"
                else:
                    body = (
                        "Authorization complete. You can close this window "
                        "and return to the terminal."
                    )

                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(
                    f"<html><body><h2>{body}</h2></body></html>".encode("utf-8")
                )

            def log_message(self, format: str, *args: Any) -> None:
                pass

        self._server = HTTPServer((self._host, self._port), CallbackHandler)
        self._server.timeout = self._timeout

    def close(self) -> None:
        if self._server is not None:
            self._server.server_close()
            self._server = None

    def _handle_one(self) -> str:
        if self._server is None:
            self.start()
        assert self._server is not None
        self._server.handle_request()
        if self._received is None:
            raise OAuthError("No redirect received from the hosted UI")
        return self._received

    async def wait(self) -> str:
        """Block (off the event loop) until the redirect arrives; return its URL.

        Raises:
            OAuthError: If nothing arrives within the timeout.
        """
        return await asyncio.to_thread(self._handle_one)
