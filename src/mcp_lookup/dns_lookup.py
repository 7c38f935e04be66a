"""
DNS lookups for domain verification.

Wraps dnspython's async resolver with a hard per-call deadline and
classifies the outcome so callers can tell "the record is not there"
apart from "we could not ask right now".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

import dns.asyncresolver
import dns.exception
import dns.resolver

from .config import DNS_NAMESERVERS, DNS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class LookupOutcome(str, Enum):
    FOUND = "found"
    ABSENT = "absent"  # NXDOMAIN or no TXT records at the name
    TRANSIENT = "transient"  # timeout, SERVFAIL, no reachable nameserver


@dataclass
class TxtLookup:
    """Result of one TXT query."""

    name: str
    outcome: LookupOutcome
    records: list[str] = field(default_factory=list)
    error: str | None = None

    def contains(self, token: str) -> bool:
        """Exact-substring match of the token against any record."""
        return bool(token) and any(token in record for record in self.records)


class DnsResolver:
    """TXT and address lookups with a bounded timeout."""

    def __init__(
        self,
        timeout: float = DNS_TIMEOUT_SECONDS,
        nameservers: list[str] | None = None,
    ):
        self.timeout = timeout
        nameservers = nameservers if nameservers is not None else DNS_NAMESERVERS
        # Explicit nameservers skip reading the system resolver config
        self._resolver = dns.asyncresolver.Resolver(configure=not nameservers)
        if nameservers:
            self._resolver.nameservers = nameservers

    async def lookup_txt(self, name: str) -> TxtLookup:
        """
        Query TXT records at ``name``.

        Multi-string TXT records are concatenated before matching, the way
        resolvers present long values split into 255-byte chunks.
        """
        try:
            answer = await asyncio.wait_for(
                self._resolver.resolve(name, "TXT", lifetime=self.timeout),
                timeout=self.timeout,
            )
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            return TxtLookup(name=name, outcome=LookupOutcome.ABSENT, error=type(e).__name__)
        except (asyncio.TimeoutError, dns.exception.Timeout) as e:
            logger.debug(f"TXT lookup timed out for {name}: {e}")
            return TxtLookup(name=name, outcome=LookupOutcome.TRANSIENT, error="timeout")
        except dns.exception.DNSException as e:
            logger.debug(f"TXT lookup failed for {name}: {type(e).__name__}: {e}")
            return TxtLookup(name=name, outcome=LookupOutcome.TRANSIENT, error=type(e).__name__)

        records = [
            b"".join(rdata.strings).decode("utf-8", errors="replace") for rdata in answer
        ]
        return TxtLookup(name=name, outcome=LookupOutcome.FOUND, records=records)

    async def resolve_addresses(self, host: str) -> list[str]:
        """
        Resolve A and AAAA records for ``host``.

        Returns an empty list when the host does not resolve (yet); the
        caller decides whether that is acceptable.
        """
        addresses: list[str] = []
        for rdtype in ("A", "AAAA"):
            try:
                answer = await asyncio.wait_for(
                    self._resolver.resolve(host, rdtype, lifetime=self.timeout),
                    timeout=self.timeout,
                )
            except (asyncio.TimeoutError, dns.exception.DNSException) as e:
                logger.debug(f"{rdtype} lookup for {host} failed: {type(e).__name__}")
                continue
            addresses.extend(rdata.to_text() for rdata in answer)
        return addresses
