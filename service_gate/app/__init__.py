"""
Share Gate service package.

Serves shared entries (uploaded files, redirects and proxied URLs) by
short name, guarded by per-entry access rules evaluated against the
requester's network identity. It provides:

- app.main: HTTP surface (share route, health, metrics).
- app.rules: Rule language, parser, geofence math and evaluation engine.
- app.lookup: Geolocation, IP category and DNS sources for evaluation.
- app.entries: Entry model and entry stores (in-memory, Redis).
- app.access: Per-request gate (training, expiry, counters) and
  response dispatch.
"""
