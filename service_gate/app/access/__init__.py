"""
Per-request access handling.

- gate: AccessGate resolves the client address and, under the entry's
  lock, applies training mode, expiry and rule evaluation, recording
  the outcome on the entry with a single commit.
- dispatcher: ResponseDispatcher serves a granted entry as a file,
  a redirect or a reverse proxy.
"""
