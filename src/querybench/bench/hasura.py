"""Extended Hasura checks: GHC runtime statistics around a run.

A Hasura GraphQL engine started with ``+RTS -T`` and the developer
API enabled serves GHC's runtime statistics at ``/dev/rts_stats``.
Reading them before and after a run gives the bytes allocated per
request and the change in live and in-use heap.  Failure to reach the
endpoint is logged and the checks are left out of the report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlsplit

import requests

from querybench.bench.metrics import ExtendedHasuraChecks

log = logging.getLogger("querybench")

RTS_STATS_PATH = "/dev/rts_stats"


@dataclass(frozen=True)
class RtsSnapshot:
    """The runtime figures read from one ``/dev/rts_stats`` response."""

    allocated_bytes: int
    live_bytes: int
    mem_in_use_bytes: int


def rts_stats_url(url: str) -> str:
    """Stats endpoint on the same host as the benchmarked *url*."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{RTS_STATS_PATH}"


def parse_rts_stats(data: Mapping[str, Any]) -> RtsSnapshot:
    """Extract the figures used by the checks.

    Raises:
        KeyError: A required field is missing.
        TypeError: A field is not a number.
    """
    gc = data["gc"]
    values = (
        data["allocated_bytes"],
        gc["gcdetails_live_bytes"],
        gc["gcdetails_mem_in_use_bytes"],
    )
    for v in values:
        if not isinstance(v, int) or isinstance(v, bool):
            raise TypeError(f"expected an integer byte count, got {v!r}")
    return RtsSnapshot(
        allocated_bytes=values[0],
        live_bytes=values[1],
        mem_in_use_bytes=values[2],
    )


def fetch_rts_stats(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: float = 10.0,
) -> RtsSnapshot | None:
    """Read the runtime statistics of the server behind *url*.

    Returns:
        The snapshot, or ``None`` on any failure (logged).
    """
    stats_url = rts_stats_url(url)
    try:
        resp = requests.get(stats_url, timeout=timeout, headers=dict(headers or {}))
    except requests.ConnectionError:
        log.error("Connection error fetching %s", stats_url)
        return None
    except requests.Timeout:
        log.error("Timeout fetching %s", stats_url)
        return None
    except requests.RequestException as exc:
        log.error("Request error fetching %s: %s", stats_url, exc)
        return None

    if resp.status_code != 200:
        log.warning(
            "%s returned %d; is the server running with +RTS -T and the dev API enabled?",
            stats_url,
            resp.status_code,
        )
        return None

    try:
        return parse_rts_stats(resp.json())
    except (ValueError, requests.JSONDecodeError):
        log.error("Invalid JSON response from %s", stats_url)
        return None
    except (KeyError, TypeError) as exc:
        log.error("Unexpected runtime stats from %s: %s", stats_url, exc)
        return None


def compute_checks(
    before: RtsSnapshot, after: RtsSnapshot, request_count: int
) -> ExtendedHasuraChecks:
    """Combine two snapshots into the report block."""
    allocated = after.allocated_bytes - before.allocated_bytes
    per_request = allocated / request_count if request_count > 0 else 0.0
    return ExtendedHasuraChecks(
        bytes_allocated_per_request=per_request,
        live_bytes_before=before.live_bytes,
        live_bytes_after=after.live_bytes,
        mem_in_use_bytes_before=before.mem_in_use_bytes,
        mem_in_use_bytes_after=after.mem_in_use_bytes,
    )
