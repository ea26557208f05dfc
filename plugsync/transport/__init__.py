"""
Update-site transports.

Transports are registered statically by URL scheme; there is no dynamic
discovery.
"""

import os
from typing import Optional
from urllib.parse import urlparse

from .base import Transport
from .local import LocalTransport, url_to_path
from .http import HttpTransport

TRANSPORTS = {
    "": LocalTransport,
    "file": LocalTransport,
    "http": HttpTransport,
    "https": HttpTransport,
}


def get_transport(site, password: Optional[str] = None) -> Transport:
    """
    Build the transport for an UpdateSite.

    The upload password comes from the argument or $PLUGSYNC_PASSWORD; it is
    never stored in the manifest.
    """
    scheme = urlparse(site.upload_url or site.url).scheme
    # Windows drive letters parse as one-letter schemes
    if len(scheme) == 1:
        scheme = ""
    transport_cls = TRANSPORTS.get(scheme)
    if transport_cls is None:
        raise ValueError(f"No transport for '{scheme}' (site '{site.name}')")
    if password is None:
        password = os.environ.get("PLUGSYNC_PASSWORD")
    return transport_cls(site.url, site.upload_url, site.username, password)


__all__ = [
    "Transport",
    "LocalTransport",
    "HttpTransport",
    "TRANSPORTS",
    "get_transport",
    "url_to_path",
]
