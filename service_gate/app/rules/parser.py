"""
Parser for the access rule language.

One rule per line. Everything after ``#`` is a comment and blank lines
are skipped. A line is, in order of precedence:

- ``!<rule>``: negation; a match re-allows what earlier rules denied
- ``*``: every address
- ``ipcat <glob>``: IP category label glob, ``*`` as wildcard
- ``@ <lat>, <lng> (<radius><unit>)``: geofence, radius defaults to 25m
- ``~<regex>``: regular expression over reverse DNS names
- ``<cidr>``: network
- ``<ip>``: single address
- anything else: hostname

A malformed line never aborts parsing; it becomes a comment rule that
carries the error text and keeps its position in the list.
"""

import re
from ipaddress import ip_address, ip_network
from typing import Optional

from .geofence import Geofence
from .models import (
    Rule, RuleSet, WildcardRule, NetworkRule, AddressRule, HostnameRule,
    PatternRule, GeofenceRule, CategoryRule, CommentRule, normalize_address,
)


GEOFENCE_PATTERN = re.compile(
    r"^([-+]?[0-9]*\.?[0-9]+)[^-+0-9]+([-+]?[0-9]*\.?[0-9]+)"
    r"(?:[^0-9]+([0-9]*\.?[0-9]+)([A-Za-z]*)[^0-9]*)?$"
)

# Meters per unit
GEOFENCE_UNITS = {
    "": 1.0,
    "m": 1.0,
    "km": 1000.0,
    "mi": 1609.0,
    "ft": 1609.0 / 5280.0,
}

DEFAULT_GEOFENCE_RADIUS = 25.0

CATEGORY_PREFIX = "ipcat "


def _error(negated: bool, message: str) -> CommentRule:
    return CommentRule(negated=negated, comment=f"Error: {message}")


def parse_geofence(text: str, negated: bool = False) -> Rule:
    """Parse the body of an ``@`` rule into a geofence or an error comment."""
    match = GEOFENCE_PATTERN.match(text)
    if match is None:
        return _error(
            negated,
            f"{text}: invalid format: must be <lat>, <lng> (<radius><unit>)?",
        )

    lat_text, lng_text, radius_text, units = match.groups()
    units = (units or "").lower()

    try:
        latitude = float(lat_text)
    except ValueError as e:
        return _error(negated, f"{text}: could not parse latitude: {e}")

    try:
        longitude = float(lng_text)
    except ValueError as e:
        return _error(negated, f"{text}: could not parse longitude: {e}")

    radius = DEFAULT_GEOFENCE_RADIUS
    if radius_text:
        try:
            radius = float(radius_text)
        except ValueError as e:
            return _error(negated, f"{text}: could not parse radius: {e}")

    factor = GEOFENCE_UNITS.get(units)
    if factor is None:
        return _error(negated, f'{text}: invalid radial units: "{units}"')

    return GeofenceRule(
        Geofence(latitude=latitude, longitude=longitude, radius=radius * factor),
        negated=negated,
    )


def parse_line(line: str, strip_comment: bool = True) -> Optional[Rule]:
    """Parse one rule line. Returns None for blank or comment-only lines."""
    if strip_comment:
        comment_start = line.find("#")
        if comment_start >= 0:
            line = line[:comment_start]

    line = line.strip()
    if not line:
        return None

    negated = False
    if line.startswith("!"):
        negated = True
        line = line[1:].strip()
        if not line:
            return _error(negated, "!: negation without a rule")

    if line == "*":
        return WildcardRule(negated=negated)

    if line.startswith(CATEGORY_PREFIX):
        return CategoryRule(line[len(CATEGORY_PREFIX):].strip(), negated=negated)

    if line.startswith("@"):
        return parse_geofence(line[1:].strip(), negated)

    if line.startswith("~"):
        expression = line[1:].strip()
        try:
            pattern = re.compile(expression)
        except re.error as e:
            return _error(negated, f"{expression}: malformed regular expression: {e}")
        return PatternRule(pattern, negated=negated)

    if "/" in line:
        try:
            return NetworkRule(ip_network(line, strict=False), negated=negated)
        except ValueError:
            pass

    try:
        return AddressRule(normalize_address(ip_address(line)), negated=negated)
    except ValueError:
        pass

    return HostnameRule(line.lower(), negated=negated)


def parse_rules(text: str) -> RuleSet:
    """Parse rule-language text into an ordered rule list."""
    rules = RuleSet()
    for line in text.splitlines():
        rule = parse_line(line)
        if rule is not None:
            rules.append(rule)
    return rules
