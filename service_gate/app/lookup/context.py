"""
Lookup context handed to the rule evaluator.
"""

import csv
from dataclasses import dataclass, field
from typing import Optional, Protocol

from shared.errors import GeoLookupError, ValidationError
from shared.logging import get_logger
from ..rules.geofence import Geofence
from ..rules.models import IPAddress
from .dns import DNSResolver
from .geoip import GeoIP2Resolver
from .ipcat import IPCatClassifier


logger = get_logger("gate.lookup")


class GeoResolver(Protocol):
    """Resolves an address to a location. Raises GeoLookupError."""

    def resolve(self, ip: IPAddress) -> Geofence:
        ...


class CategoryClassifier(Protocol):
    """Classifies an address. Returns None when the address has no category.

    Raises CategoryLookupError when classification itself fails.
    """

    def classify(self, ip: IPAddress) -> Optional[str]:
        ...


@dataclass
class LookupContext:
    """External data needed by some rules: geolocation, IP categories, DNS."""
    geo: Optional[GeoResolver] = None
    categories: Optional[CategoryClassifier] = None
    dns: DNSResolver = field(default_factory=DNSResolver)

    @classmethod
    def from_config(cls, config) -> "LookupContext":
        """Open the configured databases, continuing without any that fail to load."""
        geo = None
        if config.geoip_database:
            try:
                geo = GeoIP2Resolver.open(config.geoip_database)
                logger.info("Geolocation database opened", path=config.geoip_database)
            except (OSError, ValueError, RuntimeError) as e:
                logger.error("Could not open geolocation database", path=config.geoip_database, error=str(e))

        categories = None
        if config.ipcat_database:
            try:
                categories = IPCatClassifier.open(config.ipcat_database)
                logger.info("ipcat database imported", path=config.ipcat_database, intervals=len(categories))
            except OSError as e:
                logger.error("Could not open ipcat database", path=config.ipcat_database, error=str(e))
            except (ValidationError, csv.Error) as e:
                logger.error("Could not import ipcat database", path=config.ipcat_database, error=str(e))

        return cls(geo=geo, categories=categories, dns=DNSResolver(timeout=config.dns_timeout))

    def locate(self, ip: IPAddress) -> Optional[Geofence]:
        """Best-effort location of an address; None if unavailable."""
        if self.geo is None:
            return None
        try:
            return self.geo.resolve(ip)
        except GeoLookupError as e:
            logger.info("Could not locate address", ip=str(ip), error=e.message)
            return None

    def close(self):
        close = getattr(self.geo, "close", None)
        if close is not None:
            close()
        self.dns.close()
