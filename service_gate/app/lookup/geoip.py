"""
Geolocation resolver backed by a MaxMind GeoIP2 city database.
"""

import geoip2.database
import geoip2.errors

from shared.errors import GeoLookupError
from ..rules.geofence import Geofence
from ..rules.models import IPAddress


class GeoIP2Resolver:
    """Resolve an address to its location and accuracy radius."""

    def __init__(self, reader: geoip2.database.Reader):
        self.reader = reader

    @classmethod
    def open(cls, path: str) -> "GeoIP2Resolver":
        return cls(geoip2.database.Reader(path))

    def resolve(self, ip: IPAddress) -> Geofence:
        try:
            record = self.reader.city(str(ip))
        except geoip2.errors.AddressNotFoundError as e:
            raise GeoLookupError(str(e), {"ip": str(ip)})
        # city() on a Country or ASN database raises TypeError
        except (geoip2.errors.GeoIP2Error, TypeError, ValueError, RuntimeError) as e:
            raise GeoLookupError(str(e) or type(e).__name__, {"ip": str(ip)})

        location = record.location
        if location.latitude is None or location.longitude is None:
            raise GeoLookupError("no location recorded for address", {"ip": str(ip)})

        # Accuracy radius is reported in kilometers
        radius_km = location.accuracy_radius or 0
        return Geofence(
            latitude=location.latitude,
            longitude=location.longitude,
            radius=float(radius_km) * 1000.0,
        )

    def close(self):
        self.reader.close()
