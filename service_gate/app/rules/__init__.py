"""
Access rule package.

Defines the rule language used to guard entries: the rule variants and
the ordered rule list (models), the line parser (parser), the geofence
intersection math (geofence) and the last-match-wins evaluator (engine).

Rules are evaluated in order and every rule is considered; the last
matching rule decides. A rule list renders back to the same text form
it is parsed from.
"""
