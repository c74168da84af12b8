"""Outbound URL validation for image downloads."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Final
from urllib.parse import urlparse

from starlette.concurrency import run_in_threadpool

BLOCKED_HOSTNAMES: Final[frozenset[str]] = frozenset({"metadata.google.internal", "metadata.goog", "metadata", "kubernetes.default", "kubernetes.default.svc", "localhost"})
ALLOWED_PORTS: Final[frozenset[int]] = frozenset({80, 443})
_CARRIER_GRADE_NAT = ipaddress.ip_network("100.64.0.0/10")
_DOCUMENTATION_NETWORKS = tuple(ipaddress.ip_network(cidr) for cidr in ("192.0.2.0/24", "198.51.100.0/24", "203.0.113.0/24", "2001:db8::/32"))


class UnsafeUrlError(ValueError):
  """Raised when a URL could reach an internal or otherwise forbidden host."""


@dataclass(frozen=True)
class ValidatedUrl:
  url: str
  hostname: str
  addresses: tuple[str, ...]


def is_public_address(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
  if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
    return is_public_address(address.ipv4_mapped)
  if address.is_private or address.is_loopback or address.is_link_local or address.is_reserved or address.is_multicast or address.is_unspecified:
    return False
  if address.version == 4 and address in _CARRIER_GRADE_NAT:
    return False
  return not any(address.version == network.version and address in network for network in _DOCUMENTATION_NETWORKS)


def validate_public_url(url: str) -> ValidatedUrl:
  """Reject non-http(s), credentialed, odd-port, blocked-host, or non-public URLs.

  Every address the hostname resolves to must be public, so a record set that
  mixes public and internal addresses is refused.
  """
  parsed = urlparse(url)
  if parsed.scheme not in ("http", "https"):
    raise UnsafeUrlError("Only http and https URLs are allowed")
  if parsed.username or parsed.password:
    raise UnsafeUrlError("Credentials in URLs are not allowed")
  try:
    port = parsed.port
  except ValueError as exc:
    raise UnsafeUrlError("Invalid port") from exc
  if port is not None and port not in ALLOWED_PORTS:
    raise UnsafeUrlError(f"Port {port} is not allowed")

  hostname = (parsed.hostname or "").rstrip(".").lower()
  if not hostname:
    raise UnsafeUrlError("URL has no hostname")
  if hostname in BLOCKED_HOSTNAMES:
    raise UnsafeUrlError(f"Host {hostname} is blocked")

  try:
    infos = socket.getaddrinfo(hostname, port or (443 if parsed.scheme == "https" else 80), proto=socket.IPPROTO_TCP)
  except socket.gaierror as exc:
    raise UnsafeUrlError(f"DNS lookup failed for {hostname}") from exc

  addresses = tuple(dict.fromkeys(str(info[4][0]).split("%", 1)[0] for info in infos))
  if not addresses:
    raise UnsafeUrlError(f"Host {hostname} did not resolve")
  for raw in addresses:
    if not is_public_address(ipaddress.ip_address(raw)):
      raise UnsafeUrlError(f"Host {hostname} resolves to a restricted address")
  return ValidatedUrl(url=url, hostname=hostname, addresses=addresses)


async def validate_public_url_async(url: str) -> ValidatedUrl:
  # DNS resolution blocks; keep it off the event loop.
  return await run_in_threadpool(validate_public_url, url)
