"""
Rule data models for the access rule language.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from ipaddress import IPv4Address, IPv6Address, IPv4Network, IPv6Network
from typing import Iterator, List, Optional, Union

from .geofence import Geofence


IPAddress = Union[IPv4Address, IPv6Address]
IPNetwork = Union[IPv4Network, IPv6Network]


def normalize_address(ip: IPAddress) -> IPAddress:
    """Collapse IPv4-mapped IPv6 addresses to plain IPv4."""
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def format_float(value: float) -> str:
    """Shortest positional rendering of a float, without exponent."""
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


@dataclass(frozen=True)
class Rule:
    """Base class for one entry of a rule list."""
    negated: bool = field(default=False, kw_only=True)
    comment: str = field(default="", kw_only=True)

    label = ""

    @property
    def matchable(self) -> bool:
        return True

    def value(self) -> str:
        raise NotImplementedError

    def source(self) -> str:
        """Rule text as accepted by the parser, without the display tag."""
        return ("!" if self.negated else "") + self.value()

    def render(self) -> str:
        text = f"{self.source()} # {self.label}"
        if self.comment:
            text += f": {self.comment}"
        return text

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class WildcardRule(Rule):
    """Matches every address."""
    label = "Wildcard"

    def value(self) -> str:
        return "*"


@dataclass(frozen=True)
class NetworkRule(Rule):
    """Matches addresses inside a CIDR range."""
    network: IPNetwork

    label = "Network"

    def value(self) -> str:
        return str(self.network)


@dataclass(frozen=True)
class AddressRule(Rule):
    """Matches one address exactly."""
    address: IPAddress

    label = "IP Address"

    def value(self) -> str:
        return str(self.address)


@dataclass(frozen=True)
class HostnameRule(Rule):
    """Matches by forward and reverse DNS of a lower-cased hostname."""
    hostname: str

    label = "Hostname"

    def value(self) -> str:
        return self.hostname


@dataclass(frozen=True)
class PatternRule(Rule):
    """Matches reverse DNS names against a regular expression."""
    pattern: re.Pattern

    label = "Regular Expression"

    def value(self) -> str:
        return "~" + self.pattern.pattern


@dataclass(frozen=True)
class GeofenceRule(Rule):
    """Matches by the requester's location relative to a circular region."""
    geofence: Geofence

    label = "Geofence"

    def value(self) -> str:
        fence = self.geofence
        return (
            f"@ {format_float(fence.latitude)}, {format_float(fence.longitude)} "
            f"({format_float(fence.radius)}m)"
        )


@dataclass(frozen=True)
class CategoryRule(Rule):
    """Matches the requester's IP category label against a glob."""
    glob: str

    label = "IP Category"

    def value(self) -> str:
        return "ipcat " + self.glob

    def matcher(self) -> "re.Pattern":
        """Case-insensitive expression for the glob; ``*`` is the only wildcard."""
        search = re.escape(self.glob.lower()).replace(r"\*", ".*")
        return re.compile(search, re.IGNORECASE)


@dataclass(frozen=True)
class CommentRule(Rule):
    """Free text or a parse error; never matches."""

    @property
    def matchable(self) -> bool:
        return False

    def value(self) -> str:
        return ""

    def render(self) -> str:
        return ("!" if self.negated else "") + "# " + self.comment


@dataclass
class RuleSet:
    """Ordered list of rules. Order is significant: the last match wins."""
    rules: List[Rule] = field(default_factory=list)

    def append(self, rule: Rule):
        self.rules.append(rule)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __getitem__(self, index):
        return self.rules[index]

    @property
    def matchable_count(self) -> int:
        return sum(1 for rule in self.rules if rule.matchable)

    def header(self) -> str:
        count = self.matchable_count
        if count == 0:
            return "# Empty blacklist"
        if count == 1:
            return "# Blacklist with 1 item"
        return f"# Blacklist with {count} items"

    def render(self) -> str:
        """Render the list with a count header, one rule per line."""
        lines = [self.header()]
        lines.extend(rule.render() for rule in self.rules)
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()

    def first_error(self) -> Optional[CommentRule]:
        """First rule that records a parse error, if any."""
        for rule in self.rules:
            if isinstance(rule, CommentRule) and rule.comment.startswith("Error:"):
                return rule
        return None


@dataclass
class EvaluationResult:
    """Result of evaluating a rule list for one address."""
    allowed: bool
    reason: Optional[str] = None
    matched_rules: List[int] = field(default_factory=list)
    evaluation_time_ms: float = 0.0
    fail_closed: bool = False
