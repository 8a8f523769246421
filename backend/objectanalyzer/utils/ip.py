"""IPv4/IPv6 validation and the 32-bit decimal encoding used for range matching.

Only canonical dotted-quad IPv4 is accepted (``ipaddress`` refuses leading
zeros), so an accepted IPv4 string is always equal to its canonical form and
exact-string matching against weekly buckets is equivalent to address matching.
"""
from __future__ import annotations

import ipaddress


def is_valid_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except (ipaddress.AddressValueError, ValueError):
        return False
    return True


def is_valid_ipv6(value: str) -> bool:
    """True for a well-formed IPv6 address that is neither IPv4-mapped
    (``::ffff:a.b.c.d``) nor zone-scoped (``fe80::1%eth0``).
    """
    try:
        addr = ipaddress.IPv6Address(value)
    except (ipaddress.AddressValueError, ValueError):
        return False
    return addr.ipv4_mapped is None and addr.scope_id is None


def ipv4_to_decimal(value: str) -> int:
    """Big-endian 32-bit encoding: byte0<<24 | byte1<<16 | byte2<<8 | byte3.

    Raises ValueError for anything that is not a dotted-quad IPv4 address.
    """
    return int(ipaddress.IPv4Address(value))


def decimal_to_ipv4(value: int) -> str:
    return str(ipaddress.IPv4Address(value))


def cidr_usable_range(cidr: str) -> tuple[int, int]:
    """Return the inclusive ``(first_usable, last_usable)`` decimals of an IPv4 block.

    The base address is masked, so ``10.0.0.7/30`` means ``10.0.0.4/30``.
    Blocks with at least two host bits exclude the network and broadcast
    addresses. /31 and /32 have no such addresses and cover every address in
    the block, so a /32 trusts exactly its single host.

    Raises ValueError for a malformed or non-IPv4 block.
    """
    network = ipaddress.IPv4Network(cidr.strip(), strict=False)
    start = int(network.network_address)
    end = int(network.broadcast_address)
    if network.prefixlen <= 30:
        start += 1
        end -= 1
    return start, end
