"""Image URL normalization for token metadata."""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"
_IPFS_PATH_HASH = re.compile(r"/ipfs/([^/?#]+)")


def normalize_image_url(url: object, *, gateway: str = DEFAULT_IPFS_GATEWAY) -> str | None:
    """Rewrite an image reference to a fetchable URL, or ``None`` if unusable.

    - ``data:image/...`` URIs pass through
    - ``ipfs://<hash>`` (and ``ipfs://ipfs/<hash>``) map onto the gateway
    - any URL with an ``/ipfs/<hash>`` path is rewritten onto the gateway
    - well-formed ``http(s)`` URLs pass through

    Never raises.
    """
    if not isinstance(url, str) or not url.strip():
        return None
    url = url.strip()

    if url.startswith("data:image/"):
        return url

    if url.startswith("ipfs://"):
        path = url[len("ipfs://") :]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/") :]
        if not path:
            logger.warning("Rejecting empty IPFS image URL: %s", url)
            return None
        return f"{gateway}{path}"

    match = _IPFS_PATH_HASH.search(url)
    if match:
        return f"{gateway}{match.group(1)}"

    if url.startswith(("http://", "https://")):
        try:
            netloc = urlsplit(url).netloc
        except ValueError:
            netloc = ""
        if netloc:
            return url

    logger.warning("Rejecting unusable image URL: %s", url[:200])
    return None
