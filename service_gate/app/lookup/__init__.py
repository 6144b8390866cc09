"""
External lookup sources used while evaluating access rules.

- context: LookupContext bundling the optional geolocation resolver,
  the optional IP category classifier and the DNS resolver.
- geoip: MaxMind GeoIP2 city database resolver.
- ipcat: ipcat CSV interval set classifier.
- dns: Forward and reverse DNS lookups with a bounded timeout.

All sources are read-only. A missing source is represented by None on
the context; callers fail closed when a rule needs it.
"""
