"""
Rule evaluation engine for entry access.
"""

import time
from typing import Dict, List, Optional

from shared.errors import GeoLookupError, CategoryLookupError
from shared.logging import get_logger
from ..lookup.context import LookupContext
from .geofence import Geofence, SetIntersection, intersection
from .models import (
    IPAddress, Rule, RuleSet, EvaluationResult, WildcardRule, NetworkRule,
    AddressRule, HostnameRule, PatternRule, GeofenceRule, CategoryRule,
    CommentRule, normalize_address,
)


_UNSET = object()


class FailClosed(Exception):
    """A rule needs a data source that is missing or failing."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(message)


class RequestLookups:
    """Lookups for one address, each performed at most once per evaluation."""

    def __init__(self, context: LookupContext, ip: IPAddress, dns_deadline: Optional[float] = None):
        self.context = context
        self.ip = ip
        self.dns_deadline = dns_deadline
        self._location: Optional[Geofence] = None
        self._category = _UNSET
        self._reverse_names: Optional[List[str]] = None
        self._forward: Dict[str, List[IPAddress]] = {}

    def location(self) -> Geofence:
        if self._location is None:
            if self.context.geo is None:
                raise FailClosed("geoip", "Denying access by geofence rule error: no database provided")
            try:
                self._location = self.context.geo.resolve(self.ip)
            except GeoLookupError as e:
                raise FailClosed("geoip", f"Denying access by geofence rule error: {e.message}")
        return self._location

    def category(self) -> Optional[str]:
        if self._category is _UNSET:
            if self.context.categories is None:
                raise FailClosed("ipcat", "Denying access by ipcat rule error: no database provided")
            try:
                self._category = self.context.categories.classify(self.ip)
            except CategoryLookupError as e:
                raise FailClosed("ipcat", f"Denying access by ipcat rule error: {e.message}")
        return self._category

    def _dns_timeout(self) -> Optional[float]:
        """Time left for DNS in this evaluation; 0 once the budget is spent."""
        if self.dns_deadline is None:
            return None
        return max(0.0, self.dns_deadline - time.monotonic())

    def reverse_names(self) -> List[str]:
        if self._reverse_names is None:
            timeout = self._dns_timeout()
            if timeout == 0:
                self._reverse_names = []
            else:
                self._reverse_names = self.context.dns.lookup_addr(self.ip, timeout=timeout)
        return self._reverse_names

    def forward_addresses(self, hostname: str) -> List[IPAddress]:
        if hostname not in self._forward:
            timeout = self._dns_timeout()
            if timeout == 0:
                self._forward[hostname] = []
            else:
                self._forward[hostname] = self.context.dns.lookup_ip(hostname, timeout=timeout)
        return self._forward[hostname]


class AccessEvaluator:
    """Last-match-wins evaluator over an ordered rule list.

    Access is allowed by default. Every rule is considered in order; a
    matching rule sets access to denied, or to allowed when negated.
    A geofence or ipcat rule whose data source is missing or failing
    denies the whole request immediately. DNS lookups share a budget of
    `dns_budget` seconds per evaluation; once it is spent the remaining
    hostname and pattern rules simply do not match.
    """

    def __init__(self, context: LookupContext, metrics=None, dns_budget: Optional[float] = None):
        self.context = context
        self.metrics = metrics
        self.dns_budget = dns_budget
        self.logger = get_logger("gate.rule_engine")

    def allow(self, rules: RuleSet, ip: IPAddress) -> bool:
        """Decide whether the rule list permits the address."""
        return self.evaluate(rules, ip).allowed

    def evaluate(self, rules: RuleSet, ip: IPAddress) -> EvaluationResult:
        start_time = time.time()
        dns_deadline = None
        if self.dns_budget is not None:
            dns_deadline = time.monotonic() + self.dns_budget
        lookups = RequestLookups(self.context, normalize_address(ip), dns_deadline)

        allowed = True
        matched: List[int] = []
        for index, rule in enumerate(rules):
            try:
                match = self._matches(rule, lookups)
            except FailClosed as e:
                self.logger.warning(e.message, ip=str(ip), rule=rule.source())
                if self.metrics is not None:
                    self.metrics.record_lookup_failure(e.source)
                return EvaluationResult(
                    allowed=False,
                    reason=e.message,
                    matched_rules=matched,
                    evaluation_time_ms=(time.time() - start_time) * 1000,
                    fail_closed=True,
                )

            if match:
                allowed = rule.negated
                matched.append(index)

        if matched:
            reason = f"Rule {rules[matched[-1]].source()!r} matched last"
        else:
            reason = "No rules matched"

        result = EvaluationResult(
            allowed=allowed,
            reason=reason,
            matched_rules=matched,
            evaluation_time_ms=(time.time() - start_time) * 1000,
        )
        self.logger.debug(
            "Rule evaluation result",
            ip=str(ip),
            allowed=result.allowed,
            reason=result.reason
        )
        return result

    def _matches(self, rule: Rule, lookups: RequestLookups) -> bool:
        ip = lookups.ip

        if isinstance(rule, WildcardRule):
            return True

        if isinstance(rule, NetworkRule):
            return ip in rule.network

        if isinstance(rule, AddressRule):
            return ip == rule.address

        if isinstance(rule, HostnameRule):
            hostname = rule.hostname.rstrip(".")
            if ip in lookups.forward_addresses(hostname):
                return True
            return hostname in lookups.reverse_names()

        if isinstance(rule, PatternRule):
            return any(rule.pattern.search(name) for name in lookups.reverse_names())

        if isinstance(rule, GeofenceRule):
            bounds = intersection(rule.geofence, lookups.location())
            if rule.negated:
                # Allow only when the user is completely inside the bounds
                return SetIntersection.SUPERSET in bounds
            # Deny when the user intersects the bounds at all
            return SetIntersection.DISJOINT not in bounds

        if isinstance(rule, CategoryRule):
            category = lookups.category()
            if category is None:
                return False
            return rule.matcher().search(category) is not None

        if isinstance(rule, CommentRule):
            return False

        raise TypeError(f"Unknown rule type: {type(rule).__name__}")
