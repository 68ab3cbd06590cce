"""Hot-updatable IP allowlist for access guards."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _unmap(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_address(text: str) -> Optional[IPAddress]:
    if "%" in text:
        return None
    try:
        return _unmap(ipaddress.ip_address(text))
    except ValueError:
        return None


def _parse_network(text: str) -> Optional[IPNetwork]:
    if "%" in text:
        return None
    _, _, prefix = text.partition("/")
    if not (prefix.isascii() and prefix.isdigit()):
        return None
    try:
        network = ipaddress.ip_network(text, strict=False)
    except ValueError:
        return None
    if isinstance(network, ipaddress.IPv6Network) and network.prefixlen >= 96:
        mapped = network.network_address.ipv4_mapped
        if mapped is not None:
            return ipaddress.IPv4Network((mapped, network.prefixlen - 96), strict=False)
    return network


def parse_cidrs_or_ips(entries: Optional[Iterable[str]]) -> list[IPNetwork]:
    """Parse CIDRs or single IPs, skipping blank and invalid entries.

    A single IPv4 address becomes a /32 network, a single IPv6 address a /128.
    """
    networks: list[IPNetwork] = []
    for raw in entries or ():
        text = raw.strip()
        if not text:
            continue
        if "/" in text:
            network = _parse_network(text)
            if network is not None:
                networks.append(network)
            continue
        ip = _parse_address(text)
        if ip is None:
            continue
        networks.append(ipaddress.ip_network(ip))
    return networks


@dataclass(frozen=True)
class _Snapshot:
    allow_all: bool = False
    networks: tuple[IPNetwork, ...] = ()


class AtomicIPAllowList:
    """An updatable IP allowlist, denying everything until entries are set.

    Each update swaps in a whole new immutable snapshot.
    """

    def __init__(self) -> None:
        self._snapshot = _Snapshot()

    def update(self, entries: Optional[Iterable[str]]) -> None:
        """Replace the allowlist; invalid entries are dropped and ``None`` clears it."""
        self._snapshot = _Snapshot(networks=tuple(parse_cidrs_or_ips(entries)))

    def allow_all(self) -> None:
        """Allow every IP."""
        self._snapshot = _Snapshot(allow_all=True)

    def contains(self, ip: Union[str, IPAddress]) -> bool:
        """Report whether ``ip`` is allowed; an unparseable string is not."""
        snap = self._snapshot
        if snap.allow_all:
            return True
        if not snap.networks:
            return False
        address = _parse_address(ip.strip()) if isinstance(ip, str) else _unmap(ip)
        if address is None:
            return False
        return any(address in network for network in snap.networks)

    def is_empty(self) -> bool:
        """True when the list neither allows all nor holds any network."""
        snap = self._snapshot
        return not snap.allow_all and not snap.networks

    def __contains__(self, ip: Union[str, IPAddress]) -> bool:
        return self.contains(ip)