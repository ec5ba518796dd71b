"""Find the LAN-facing IPv4 address other devices should use to reach us."""
import ipaddress
import logging
import socket
import struct

import fcntl
import netifaces

logger = logging.getLogger(__name__)

SIOCGIFFLAGS = 0x8913
IFF_UP = 0x1

LIMITED_BROADCAST = ipaddress.IPv4Address("255.255.255.255")


class NetworkDiscoveryError(Exception):
    pass


class GatewayDiscoveryError(NetworkDiscoveryError):
    pass


class NoMatchingInterfaceError(NetworkDiscoveryError):
    pass


# ----------------------------
# Interface helpers
# ----------------------------

def _iface_is_up(ifname: str) -> bool:
    """Return True if the interface is administratively up (Linux, IFF_UP)."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        ifreq = struct.pack("256s", ifname.encode("utf-8")[:15])
        res = fcntl.ioctl(s.fileno(), SIOCGIFFLAGS, ifreq)
    flags = struct.unpack("H", res[16:18])[0]
    return bool(flags & IFF_UP)

def is_global_unicast(ip: ipaddress.IPv4Address) -> bool:
    return not (
        ip.is_unspecified
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip == LIMITED_BROADCAST
    )

def discover_gateway() -> ipaddress.IPv4Address:
    """Default IPv4 gateway from the routing table."""
    try:
        default = netifaces.gateways().get("default", {})
    except OSError as e:
        raise GatewayDiscoveryError(f"failed to read routing table: {e}") from e

    entry = default.get(netifaces.AF_INET)
    if not entry:
        raise GatewayDiscoveryError("no default IPv4 gateway found (is the network connected?)")
    try:
        return ipaddress.IPv4Address(entry[0])
    except ValueError as e:
        raise GatewayDiscoveryError(f"invalid gateway address {entry[0]!r}") from e

def _iface_ipv4_networks(ifname: str) -> list[ipaddress.IPv4Interface]:
    out: list[ipaddress.IPv4Interface] = []
    for addr in netifaces.ifaddresses(ifname).get(netifaces.AF_INET, []):
        ip = addr.get("addr")
        netmask = addr.get("netmask")
        if not ip or not netmask:
            continue
        try:
            out.append(ipaddress.IPv4Interface(f"{ip}/{netmask}"))
        except ValueError:
            continue
    return out

def local_ip_for_gateway(gateway: ipaddress.IPv4Address) -> ipaddress.IPv4Address:
    """First global-unicast IPv4 address on an up interface whose subnet holds the gateway."""
    for ifname in netifaces.interfaces():
        try:
            if not _iface_is_up(ifname):
                continue
            networks = _iface_ipv4_networks(ifname)
        except (OSError, ValueError) as e:
            logger.warning("failed to get addresses for interface %s: %s", ifname, e)
            continue

        for iface in networks:
            if not is_global_unicast(iface.ip):
                continue
            if gateway in iface.network:
                return iface.ip

    raise NoMatchingInterfaceError(
        f"no local IPv4 address found in the same subnet as gateway {gateway}"
    )

def local_ip_string() -> str:
    gateway = discover_gateway()
    ip = local_ip_for_gateway(gateway)
    ip_str = str(ip) if ip else ""
    if not ip_str:
        raise NoMatchingInterfaceError("local IP address is empty")
    return ip_str
