"""Differential tracking of encrypted connections to known services.

A connection is identified by ``"<pid>|<remote ip>:<port>"``. Only identifiers
absent from the previous sample are counted, so a long-lived session is
reported once, at the first sample that sees it.
"""

from __future__ import annotations

import logging
import socket
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable

import psutil

from ..signatures import SignatureCatalog

logger = logging.getLogger(__name__)

ENCRYPTED_PORTS = frozenset({443})

Resolver = Callable[[str], str]


def reverse_lookup(address: str) -> str:
    """Resolve ``address`` to a hostname, falling back to the address itself."""

    try:
        return socket.gethostbyaddr(address)[0]
    except (OSError, UnicodeError):
        return address


def endpoint_id(pid: int | None, address: str, port: int) -> str:
    return f"{pid or 0}|{address}:{port}"


def endpoint_address(identifier: str) -> str:
    _, _, remote = identifier.partition("|")
    address, _, _ = remote.rpartition(":")
    return address


@dataclass(slots=True)
class ConnectionSample:
    """Per-service counts of new connections plus the baseline to persist."""

    counts: dict[str, int] = field(default_factory=dict)
    baseline: frozenset[str] = field(default_factory=frozenset)


class ConnectionTracker:
    """Diff established connections against the previous sample's baseline."""

    def __init__(
        self,
        catalog: SignatureCatalog,
        *,
        connections_fn: Callable[..., Iterable] = psutil.net_connections,
        resolver: Resolver = reverse_lookup,
        ports: Iterable[int] = ENCRYPTED_PORTS,
    ) -> None:
        self._catalog = catalog
        self._connections_fn = connections_fn
        self._resolver = resolver
        self._ports = frozenset(ports)

    def established(self) -> frozenset[str]:
        current: set[str] = set()
        for conn in self._connections_fn(kind="tcp"):
            if conn.status != psutil.CONN_ESTABLISHED or not conn.raddr:
                continue
            address, port = conn.raddr[0], conn.raddr[1]
            if port in self._ports:
                current.add(endpoint_id(conn.pid, address, port))
        return frozenset(current)

    def sample(self, previous: frozenset[str]) -> ConnectionSample:
        try:
            current = self.established()
        except (psutil.Error, OSError) as exc:
            # Unreadable is not the same as empty: keep the old baseline.
            logger.debug("Connection table unavailable: %s", exc)
            return ConnectionSample(counts={}, baseline=frozenset(previous))

        if not current:
            return ConnectionSample()

        hostnames: dict[str, str] = {}
        counts: Counter[str] = Counter()
        for identifier in sorted(current - previous):
            address = endpoint_address(identifier)
            if address not in hostnames:
                hostnames[address] = self._resolver(address)
            service = self._catalog.classify_host(hostnames[address])
            if service is not None:
                counts[service] += 1
        return ConnectionSample(counts=dict(counts), baseline=current)


__all__ = [
    "ConnectionSample",
    "ConnectionTracker",
    "ENCRYPTED_PORTS",
    "endpoint_address",
    "endpoint_id",
    "reverse_lookup",
]
