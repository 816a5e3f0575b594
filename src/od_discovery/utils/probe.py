"""Single-request reachability probe for open-directory URLs.

The probe sends one HEAD request with a hard wall-clock timeout and turns
whatever happens into an ``Outcome``. It never raises for network trouble:
timeouts, refused connections, TLS failures and malformed URLs are the normal
"unreachable" signal for this corpus, not faults.

Certificate verification is off on purpose. Open directories are uncurated
public servers and a broken certificate says nothing about whether the files
are still there.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
import time
from urllib.parse import urlsplit, urlunsplit

import httpx

from ..domain.model import Outcome
from ..observability.metrics import PROBE_COUNT, PROBE_LATENCY


logger = logging.getLogger(__name__)

_PROBE_ERRORS = (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError, ValueError, OSError)


def normalize_url(url: str) -> str:
    """Percent-encode literal spaces; scan output often carries them unescaped."""
    return url.replace(" ", "%20")


def _match_alias(host: str, aliases: Mapping[str, str]) -> str | None:
    host = host.lower()
    for alias, canonical in aliases.items():
        alias = alias.lower()
        if host == alias or host.endswith("." + alias):
            return canonical
    return None


def rewrite_for_provider(url: str, aliases: Mapping[str, str]) -> tuple[str, dict[str, str]]:
    """Route filter-evading alias hosts to their canonical domain.

    Returns the URL to request and any extra headers. When the host matches an
    alias the request goes to the canonical host and carries the original URL
    as ``Referer``; every other URL passes through untouched.
    """
    if not aliases:
        return url, {}

    parts = urlsplit(url)
    host = parts.hostname or ""
    canonical = _match_alias(host, aliases)
    if canonical is None:
        return url, {}

    netloc = canonical if parts.port is None else f"{canonical}:{parts.port}"
    rewritten = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    return rewritten, {"Referer": url}


def classify_status(status_code: int) -> Outcome:
    """2xx and 3xx count as reachable; everything else does not."""
    if 200 <= status_code < 400:
        return Outcome.REACHABLE
    return Outcome.UNREACHABLE


class ReachabilityProbe:
    """Bounded-timeout HEAD probe.

    Use as an async context manager so the pooled client is closed, or pass a
    pre-built ``client`` (tests hand in one backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        domain_aliases: Mapping[str, str] | None = None,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_connections: int = 64,
    ):
        self.timeout = timeout
        self.domain_aliases = dict(domain_aliases or {})
        self.user_agent = user_agent
        self.max_connections = max_connections
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self.client is None:
            self.client = self._create_client()
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    def _create_client(self) -> httpx.AsyncClient:
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        limits = httpx.Limits(max_connections=self.max_connections, max_keepalive_connections=0)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            headers=headers,
            limits=limits,
            follow_redirects=False,  # a redirect already proves the server answers
            verify=False,
        )

    async def probe(self, url: str) -> Outcome:
        """Probe ``url`` once and classify the response."""
        if self.client is None:
            raise RuntimeError("ReachabilityProbe used outside of its async context")

        start = time.perf_counter()
        try:
            target, headers = rewrite_for_provider(normalize_url(url), self.domain_aliases)
            response = await asyncio.wait_for(self.client.head(target, headers=headers), timeout=self.timeout)
            outcome = classify_status(response.status_code)
            if outcome is Outcome.UNREACHABLE:
                logger.debug("Probe %s answered %d", url, response.status_code)
        except _PROBE_ERRORS as exc:
            logger.debug("Probe %s failed: %s", url, exc.__class__.__name__)
            outcome = Outcome.UNREACHABLE

        PROBE_COUNT.labels(outcome=outcome.value).inc()
        PROBE_LATENCY.labels(outcome=outcome.value).observe(time.perf_counter() - start)
        return outcome
