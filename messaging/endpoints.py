"""Ordered endpoint candidates per logical provider operation.

Templates use ``{base}`` for the configured provider URL, ``{root}`` for the
same URL with a trailing ``/api`` removed, and ``{name}`` for the
URL-quoted instance name. Order is precedence: the path that answers on the
most deployments comes first.
"""

from __future__ import annotations

import re
from urllib.parse import quote

from messaging.types import EndpointCandidate

CREATE_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/instance/create"),
    EndpointCandidate("{root}/instance/create"),
    EndpointCandidate("{root}/instances/create"),
    EndpointCandidate("{base}/instances/create"),
)

CONNECT_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{root}/instance/connect/{name}"),
    EndpointCandidate("{base}/instance/connect/{name}"),
    EndpointCandidate("{root}/instances/connect/{name}"),
    EndpointCandidate("{base}/instances/connect/{name}"),
    EndpointCandidate("{root}/instance/{name}/qrcode"),
    EndpointCandidate("{root}/instances/{name}/qrcode"),
)

STATUS_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/instance/connectionState/{name}"),
    EndpointCandidate("{base}/instance/fetchInstances/{name}"),
    EndpointCandidate("{base}/instances/{name}"),
    EndpointCandidate("{base}/instances/status/{name}"),
)

LIST_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/instance/fetchInstances"),
    EndpointCandidate("{root}/instance/fetchInstances"),
)

DELETE_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/instance/delete/{name}"),
    EndpointCandidate("{base}/instances/delete/{name}"),
)

LOGOUT_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/instance/logout/{name}"),
    EndpointCandidate("{base}/instances/logout/{name}"),
)

SEND_TEXT_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/message/sendText/{name}", requires_instance_token=True),
    EndpointCandidate("{root}/message/sendText/{name}", requires_instance_token=True),
)

SEND_MEDIA_CANDIDATES: tuple[EndpointCandidate, ...] = (
    EndpointCandidate("{base}/message/sendMedia/{name}", requires_instance_token=True),
    EndpointCandidate("{root}/message/sendMedia/{name}", requires_instance_token=True),
)

_API_SUFFIX = re.compile(r"/api/?$")


def root_url(base_url: str) -> str:
    """Strip a trailing /api segment from the provider URL."""
    return _API_SUFFIX.sub("", base_url.rstrip("/"))


def render_candidates(
    candidates: tuple[EndpointCandidate, ...],
    base_url: str,
    name: str = "",
) -> list[tuple[EndpointCandidate, str]]:
    """Render candidate URLs in order, dropping later duplicates."""
    base = base_url.rstrip("/")
    root = root_url(base)
    quoted_name = quote(name, safe="")
    rendered: list[tuple[EndpointCandidate, str]] = []
    seen: set[str] = set()
    for candidate in candidates:
        url = candidate.render(base_url=base, root_url=root, name=quoted_name)
        if url in seen:
            continue
        seen.add(url)
        rendered.append((candidate, url))
    return rendered
