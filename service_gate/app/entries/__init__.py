"""
Entry model and entry stores.

An entry is a named share (uploaded file, redirect or proxied URL) with
its access rules, counters and training/expiry settings. Stores hand
out copies of entries; a change becomes visible only through commit().
Per-entry locks serialize read-modify-commit sequences.
"""
