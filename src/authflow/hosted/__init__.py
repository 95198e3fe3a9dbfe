"""Bundled hosted-UI implementations of the provider seams.

- :class:`HostedUIOAuthHandler` -- authorize/token/logout endpoints with PKCE.
- :class:`HostedUIUserPool` -- token cache, refresh grant and ``userInfo``.
- :class:`CallbackServer` -- loopback server receiving the redirect in a CLI.
"""

from authflow.hosted.callback import CallbackServer
from authflow.hosted.oauth import HostedUIOAuthHandler, generate_pkce_pair
from authflow.hosted.pool import HostedUIUser, HostedUIUserPool

__all__ = [
    "CallbackServer",
    "HostedUIOAuthHandler",
    "HostedUIUser",
    "HostedUIUserPool",
    "generate_pkce_pair",
]
