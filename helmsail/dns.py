"""Polling for DNS availability of in-cluster services."""

from __future__ import annotations

import asyncio
import socket
import typing as typ

from helmsail.errors import DnsTimeoutError
from helmsail.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)

_DEFAULT_POLL_INTERVAL = 0.5


async def wait_for_dns_availability(
    host: str,
    timeout: dt.timedelta,
    *,
    poll_interval: float = _DEFAULT_POLL_INTERVAL,
) -> None:
    """Block until ``host`` resolves.

    Parameters
    ----------
    host : str
        Host name to resolve.
    timeout : datetime.timedelta
        Overall time allowed for the name to appear.
    poll_interval : float, default 0.5
        Delay in seconds between failed lookups.

    Raises
    ------
    DnsTimeoutError
        If ``host`` is still unresolvable when ``timeout`` elapses. Resolution
        errors themselves are never raised; they only trigger another poll.

    """
    loop = asyncio.get_running_loop()
    try:
        async with asyncio.timeout(timeout.total_seconds()):
            while True:
                try:
                    await loop.getaddrinfo(host, None)
                except socket.gaierror:
                    log_debug(logger, "DNS lookup for %s failed, retrying", host)
                    await asyncio.sleep(poll_interval)
                else:
                    return
    except TimeoutError as exc:
        raise DnsTimeoutError(host, timeout) from exc
