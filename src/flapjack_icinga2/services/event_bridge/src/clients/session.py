"""HTTP session factory for the Icinga 2 API."""

import ssl
from typing import Union

import aiohttp

from flapjack_icinga2 import __version__
from ..config.settings import IcingaConfig


def create_session(
    config: IcingaConfig,
    ssl_context: Union[ssl.SSLContext, bool, None] = None
) -> aiohttp.ClientSession:
    """
    Create the HTTP session used by one streaming session.

    The session carries basic auth, JSON accept headers, the TLS setting and
    connect timeouts. Per-request timeouts are set by the callers since the
    event stream and object lookups need different read limits.
    """
    headers = {
        'Accept': 'application/json',
        'User-Agent': f'flapjack-icinga2/{__version__}',
    }
    if config.user:
        headers['Authorization'] = aiohttp.BasicAuth(config.user, config.password or "").encode()

    connector = aiohttp.TCPConnector(
        ssl=ssl_context if ssl_context is not None else True,
        keepalive_timeout=config.keepalive_seconds,
        limit=10
    )

    return aiohttp.ClientSession(
        headers=headers,
        connector=connector,
        timeout=aiohttp.ClientTimeout(
            total=None,
            connect=config.connect_timeout_seconds,
            sock_connect=config.connect_timeout_seconds
        )
    )
