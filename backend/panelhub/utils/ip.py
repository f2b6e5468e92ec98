"""IPv4 helpers for subnet sweeps."""

from __future__ import annotations

import re

_BASE_IP = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


def is_valid_base_ip(base_ip: str) -> bool:
    """True for exactly three dot-separated octets, each 0-255 (e.g. ``192.168.1``)."""
    match = _BASE_IP.match(base_ip.strip()) if isinstance(base_ip, str) else None
    if not match:
        return False
    return all(0 <= int(octet) <= 255 for octet in match.groups())


def ip_sort_key(ip: str) -> tuple[int, ...]:
    """Numeric sort key so ``10.0.0.9`` sorts before ``10.0.0.10``."""
    try:
        return tuple(int(part) for part in ip.split("."))
    except ValueError:
        return (256,)


def expand_range(base_ip: str, start: int, end: int) -> list[str]:
    return [f"{base_ip}.{octet}" for octet in range(start, end + 1)]


def is_valid_ip(ip: str) -> bool:
    parts = ip.split(".")
    return len(parts) == 4 and is_valid_base_ip(".".join(parts[:3])) and parts[3].isdigit() and int(parts[3]) <= 255
