"""Contains utility functions for network stuff"""

from netaddr import IPNetwork
from netaddr.core import AddrFormatError


def is_cidr(cidr):
    """Checks if a string is an IPv4 network in CIDR notation"""

    if not isinstance(cidr, str) or "/" not in cidr:
        return False
    try:
        net = IPNetwork(cidr)
    except (AddrFormatError, ValueError):
        return False

    return net.version == 4


def cidr_contains(outer, inner):
    """Checks that the network ``inner`` lies completely inside ``outer``"""

    return IPNetwork(inner) in IPNetwork(outer)
