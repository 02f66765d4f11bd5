# scanner.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional
import ipaddress
import logging
import socket

import psutil

from telemetry import DEFAULT_TIMEOUT_S, TelemetrySnapshot, fetch_system_info


logger = logging.getLogger(__name__)

DEFAULT_PREFIX = 24
DEFAULT_MAX_HOSTS = 1024

Fetcher = Callable[[str, float], TelemetrySnapshot]


@dataclass(frozen=True)
class Device:
    address: str
    hostname: str
    hardware_id: str = ""

    @property
    def key(self) -> str:
        """Stable identity: the MAC when the device reported one, else its IP."""
        return self.hardware_id or self.address


def local_networks(prefix: int = DEFAULT_PREFIX) -> List[ipaddress.IPv4Network]:
    """
    Networks of every up, non-loopback IPv4 interface, each address masked
    to `prefix` bits. Duplicates (two interfaces on one LAN) collapse.
    """
    addrs = psutil.net_if_addrs()
    # net_if_stats() can fail with OSError in containers; treat every interface as up then.
    try:
        stats = psutil.net_if_stats()
    except OSError:
        logger.debug("Interface stats unavailable; assuming all interfaces are up")
        stats = {}

    networks: List[ipaddress.IPv4Network] = []
    for iface, addr_list in addrs.items():
        st = stats.get(iface)
        if st is not None and not st.isup:
            continue
        for addr in addr_list:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback or ip.is_link_local:
                continue
            net = ipaddress.IPv4Interface(f"{ip}/{prefix}").network
            if net not in networks:
                logger.info("Interface %s: %s -> scanning %s", iface, ip, net)
                networks.append(net)
    return networks


def host_addresses(
    network: ipaddress.IPv4Network, max_hosts: int = DEFAULT_MAX_HOSTS
) -> List[str]:
    """Usable host addresses of `network` (x.y.z.1 - x.y.z.254 for a /24)."""
    hosts: List[str] = []
    for h in network.hosts():
        if len(hosts) >= max_hosts:
            logger.warning(
                "%s has more than %d hosts; scanning only the first %d",
                network, max_hosts, max_hosts,
            )
            break
        hosts.append(str(h))
    return hosts


def scan_network(
    networks: Optional[Iterable[str]] = None,
    prefix: int = DEFAULT_PREFIX,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    fetch: Fetcher = fetch_system_info,
    max_hosts: int = DEFAULT_MAX_HOSTS,
) -> List[Device]:
    """
    Probe every host address and return the devices that answered with a
    valid system info payload, ordered by address.

    `networks` are explicit CIDRs; by default the local interfaces are used.
    One worker per address, no retries: an address that does not answer
    within `timeout_s` is simply absent. Safe to call repeatedly.
    """
    if networks is None:
        nets = local_networks(prefix)
    else:
        nets = [ipaddress.ip_network(n, strict=False) for n in networks]

    addresses: List[str] = []
    seen = set()
    for net in nets:
        if net.version != 4:
            logger.warning("Skipping non-IPv4 network %s", net)
            continue
        for ip in host_addresses(net, max_hosts):
            if ip not in seen:
                seen.add(ip)
                addresses.append(ip)

    logger.info("Scanning %d addresses for devices...", len(addresses))
    if not addresses:
        return []

    found: Dict[str, Device] = {}

    def probe(ip: str) -> Optional[Device]:
        info = fetch(ip, timeout_s)
        if not info.valid:
            return None
        return Device(address=ip, hostname=info.hostname, hardware_id=info.hardware_id)

    with ThreadPoolExecutor(max_workers=len(addresses), thread_name_prefix="probe") as ex:
        futures = [ex.submit(probe, ip) for ip in addresses]
        for f in as_completed(futures):
            try:
                device = f.result()
            except Exception:
                # a misbehaving fetcher must not abort the whole pass
                logger.exception("Probe failed")
                continue
            if device:
                logger.info("Found device: %s %s", device.address, device.hostname)
                found[device.address] = device

    devices = sorted(found.values(), key=lambda d: ipaddress.IPv4Address(d.address))
    logger.info("Found %d devices", len(devices))
    return devices
