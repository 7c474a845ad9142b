"""
Address Range Expansion

Turns user-supplied address and unit ID specifications into concrete
scan targets.

Address forms:
    192.168.1.10                  single host
    192.168.1.10, 192.168.1.12    list
    192.168.1.10-20               last-octet range
    192.168.1.0/24                CIDR (network and broadcast excluded)
    inverter.local                hostname, resolved when probed
    0.0.0.0/0 or 0.0.0.0          every subnet on a local IPv4 interface;
                                  interfaces wider than a /16 contribute
                                  only the /16 around their own address
"""

import ipaddress
import re
import socket

import psutil

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import ConfigError
from sunspec_controller.common.logging_setup import get_service_logger

logger = get_service_logger("discovery.range")

# Refuse to expand specs larger than a /16
MAX_SCAN_HOSTS = 65534
LOCAL_SUBNET_MIN_PREFIX = 16

_HOSTNAME_LABEL = re.compile(r"[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?")


def hosts_in_network(network: ipaddress.IPv4Network) -> list[str]:
    """Usable host addresses, excluding network and broadcast addresses."""
    first = int(network.network_address) + 1
    last = int(network.broadcast_address)
    if last - first > MAX_SCAN_HOSTS:
        raise ConfigError(f"Network {network} is too large to scan")
    return [str(ipaddress.IPv4Address(i)) for i in range(first, last)]


def local_subnets() -> list[ipaddress.IPv4Network]:
    """Subnets of all non-loopback IPv4 interfaces."""
    networks = []
    for name, addresses in psutil.net_if_addrs().items():
        for addr in addresses:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                interface = ipaddress.IPv4Interface(f"{addr.address}/{addr.netmask}")
            except ValueError:
                continue
            if interface.ip.is_loopback or interface.ip.is_link_local:
                continue
            network = interface.network
            if network.prefixlen < LOCAL_SUBNET_MIN_PREFIX:
                network = ipaddress.IPv4Interface(f"{interface.ip}/{LOCAL_SUBNET_MIN_PREFIX}").network
                logger.warning(
                    f"Local interface {name} is on {interface.network}; scanning {network} only"
                )
            logger.debug(f"Local interface {name}: {network}")
            networks.append(network)
    return networks


def _is_ipv4(text: str) -> bool:
    try:
        ipaddress.IPv4Address(text)
    except ValueError:
        return False
    return True


def is_hostname(text: str) -> bool:
    """DNS name syntax check. All-numeric names are malformed addresses, not hosts."""
    if len(text) > 253 or text.replace(".", "").isdigit():
        return False
    return all(_HOSTNAME_LABEL.fullmatch(label) for label in text.rstrip(".").split("."))


def _expand_part(part: str) -> list[str]:
    if part in constants.LOCAL_SUBNET_TOKENS:
        hosts = []
        for network in local_subnets():
            hosts.extend(hosts_in_network(network))
        return hosts

    if "/" in part:
        try:
            network = ipaddress.IPv4Network(part, strict=False)
        except ValueError as e:
            raise ConfigError(f"Invalid CIDR range {part!r}: {e}") from e
        return hosts_in_network(network)

    base, dash, end_text = part.rpartition("-")
    if dash and _is_ipv4(base.strip()):
        start_address = ipaddress.IPv4Address(base.strip())
        try:
            end_octet = int(end_text)
        except ValueError as e:
            raise ConfigError(f"Invalid address range {part!r}") from e

        prefix = str(start_address).rsplit(".", 1)[0]
        start_octet = int(start_address) & 0xFF
        if not start_octet <= end_octet <= 255:
            raise ConfigError(f"Invalid address range {part!r}")
        return [f"{prefix}.{i}" for i in range(start_octet, end_octet + 1)]

    if _is_ipv4(part):
        return [str(ipaddress.IPv4Address(part))]
    if is_hostname(part):
        return [part]
    raise ConfigError(f"Invalid address {part!r}")


def expand_address_range(spec: str) -> list[str]:
    """
    Expand an address specification into a list of hosts.

    Args:
        spec: Address specification (see module docstring)

    Returns:
        Hosts in specification order, without duplicates. Empty for an
        empty specification.

    Raises:
        ConfigError: malformed specification
    """
    if not spec or not spec.strip():
        return []

    hosts: list[str] = []
    for part in spec.split(","):
        part = part.strip()
        if part:
            hosts.extend(_expand_part(part))

    return list(dict.fromkeys(hosts))


def expand_unit_ids(spec: str | None) -> list[int] | None:
    """
    Parse a unit ID specification like "1", "1-10" or "1,5,10-20".

    Returns:
        Sorted unique IDs, or None for an empty specification (scan all).
        Parts that are not integers are ignored.
    """
    if spec is None or not str(spec).strip():
        return None

    ids: set[int] = set()
    for part in str(spec).split(","):
        part = part.strip()
        if "-" in part:
            start_text, _, end_text = part.partition("-")
            try:
                start, end = int(start_text), int(end_text)
            except ValueError:
                continue
            ids.update(range(start, end + 1))
        else:
            try:
                ids.add(int(part))
            except ValueError:
                continue

    return sorted(ids)


def default_unit_ids(port: int) -> list[int]:
    """Unit IDs to probe, most likely first."""
    if port == constants.CONEXT_GATEWAY_PORT:
        return list(constants.CONEXT_PRIORITY_UNIT_IDS)

    ids = list(constants.PRIORITY_UNIT_IDS)
    ids.extend(
        i for i in range(constants.MIN_UNIT_ID, constants.MAX_UNIT_ID + 1)
        if i not in constants.PRIORITY_UNIT_IDS
    )
    return ids
