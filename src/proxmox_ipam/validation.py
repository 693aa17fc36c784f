"""Sanity checks for per-family IP configuration."""

from __future__ import annotations

import ipaddress
from typing import Union

from .config import APIEndpoint, IPConfigSpec, IPFamily

_Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ValidationError(ValueError):
    """Raised when a cluster's IP configuration cannot be turned into a pool."""


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_address(value: str, family: IPFamily, what: str) -> _Address:
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError as exc:
        raise ValidationError(f"{what} '{value}' is not a valid IP address") from exc
    if address.version != family.version:
        raise ValidationError(
            f"{what} '{value}' is not an IPv{family.version} address"
        )
    return address


def _validate_entry(entry: str, family: IPFamily) -> None:
    if not entry or not entry.strip():
        raise ValidationError("address entries cannot be empty")

    if "/" in entry:
        try:
            network = ipaddress.ip_network(entry.strip(), strict=False)
        except ValueError as exc:
            raise ValidationError(f"address '{entry}' is not a valid CIDR") from exc
        if network.version != family.version:
            raise ValidationError(
                f"address '{entry}' is not an IPv{family.version} network"
            )
        return

    if "-" in entry:
        start_raw, _, end_raw = entry.partition("-")
        start = _parse_address(start_raw, family, "range start")
        end = _parse_address(end_raw, family, "range end")
        if start > end:
            raise ValidationError(f"range '{entry}' starts after it ends")
        return

    _parse_address(entry, family, "address")


def validate_ip_config(family: IPFamily, config: IPConfigSpec) -> None:
    """Validate ``config`` for ``family``.

    Address entries may be single addresses, CIDRs, or ``start-end`` ranges.
    The gateway has to belong to the same family and the prefix must fit the
    family's address width.
    """

    if not config.addresses:
        raise ValidationError(f"IP{family.value} config has no addresses")

    for entry in config.addresses:
        _validate_entry(entry, family)

    if not config.gateway:
        raise ValidationError(f"IP{family.value} config has no gateway")
    _parse_address(config.gateway, family, "gateway")

    if not _is_int(config.prefix):
        raise ValidationError(f"prefix '{config.prefix}' is not an integer")
    if not 0 <= config.prefix <= family.max_prefix:
        raise ValidationError(
            f"prefix {config.prefix} is outside 0..{family.max_prefix} for IP{family.value}"
        )


def validate_endpoint(endpoint: APIEndpoint) -> None:
    """Validate a user supplied control plane endpoint."""

    if not _is_int(endpoint.port):
        raise ValidationError(f"control plane port '{endpoint.port}' is not an integer")
    if not 0 <= endpoint.port <= 65535:
        raise ValidationError(f"control plane port {endpoint.port} is outside 0..65535")
