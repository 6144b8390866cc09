"""
Access gate for shared entries.
"""

import asyncio
import contextvars
from datetime import datetime, timezone
from email.utils import format_datetime
from ipaddress import ip_address
from typing import Optional

from fastapi import Request

from shared.errors import StoreError
from shared.logging import get_logger, set_client_context
from ..entries.models import Entry
from ..entries.store import EntryStore
from ..lookup.context import LookupContext
from ..rules.engine import AccessEvaluator
from ..rules.models import (
    IPAddress, AddressRule, GeofenceRule, EvaluationResult, normalize_address,
)


TRAINING_COMMENT = "Automatically added by training on {date}"


def parse_client_host(host: str) -> Optional[IPAddress]:
    """Parse an address that may carry a port or IPv6 brackets."""
    host = host.strip()
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            return None
        host = host[1:end]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]

    try:
        return normalize_address(ip_address(host))
    except ValueError:
        return None


class AccessGate:
    """Decides whether a request may access a named entry."""

    def __init__(
        self,
        store: EntryStore,
        context: LookupContext,
        evaluator: Optional[AccessEvaluator] = None,
        *,
        metrics=None,
        trust_forwarded_headers: bool = False,
        evaluation_timeout: float = 5.0,
    ):
        self.store = store
        self.context = context
        self.evaluator = evaluator or AccessEvaluator(context, metrics=metrics)
        self.metrics = metrics
        self.trust_forwarded_headers = trust_forwarded_headers
        self.evaluation_timeout = evaluation_timeout
        self.logger = get_logger("gate.access")

    def client_address(self, request: Request) -> Optional[IPAddress]:
        """Real remote address of the request."""
        if self.trust_forwarded_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return parse_client_host(forwarded_for.split(",")[0])
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return parse_client_host(real_ip)

        if request.client is None or not request.client.host:
            return None
        return parse_client_host(request.client.host)

    async def access(self, name: str, request: Request) -> Optional[Entry]:
        """Return the entry if access is granted, None otherwise."""
        ip = self.client_address(request)
        if ip is None:
            self.logger.warning("Could not parse client address", entry=name)
            self._record("deny", "bad_address")
            return None
        set_client_context(str(ip))

        try:
            return await self.check(name, ip)
        except StoreError as e:
            self.logger.error("Entry store error", entry=name, ip=str(ip), error=e.message)
            self._record("deny", "store_error")
            return None

    async def check(self, name: str, ip: IPAddress) -> Optional[Entry]:
        """Apply training, expiry and rules for an address. Raises StoreError."""
        async with self.store.lock(name):
            entry = await self.store.get(name)
            if entry is None:
                self._record("deny", "not_found")
                return None

            if entry.access_train:
                await self._train(entry, ip)
                self._record("deny", "training")
                return None

            if entry.is_expired():
                self.logger.info("Access restricted to expired entry", entry=entry.name, ip=str(ip))
                entry.access_blacklist_count += 1
                await self.store.commit(entry)
                self._record("deny", "expired")
                return None

            result = await self._evaluate(entry, ip)
            if not result.allowed:
                self.logger.info(
                    "Access restricted to blacklisted address",
                    entry=entry.name,
                    ip=str(ip),
                    reason=result.reason
                )
                entry.access_blacklist_count += 1
                await self.store.commit(entry)
                self._record("deny", "fail_closed" if result.fail_closed else "blacklist")
                return None

            entry.access_count += 1
            await self.store.commit(entry)
            self._record("allow", "granted")
            return entry

    async def _train(self, entry: Entry, ip: IPAddress):
        """Turn the request into rules denying its address and location."""
        loop = asyncio.get_running_loop()
        comment = TRAINING_COMMENT.format(date=format_datetime(datetime.now(timezone.utc), usegmt=True))

        entry.access_blacklist.append(AddressRule(ip, comment=comment))

        try:
            location = await asyncio.wait_for(
                loop.run_in_executor(None, contextvars.copy_context().run, self.context.locate, ip),
                timeout=self.evaluation_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Geolocation timed out during training", entry=entry.name, ip=str(ip))
            location = None
        if location is not None:
            entry.access_blacklist.append(GeofenceRule(location, comment=comment))

        await self.store.commit(entry)
        self.logger.info(
            "Training added rules",
            entry=entry.name,
            ip=str(ip),
            geofence=location is not None
        )

    async def _evaluate(self, entry: Entry, ip: IPAddress) -> EvaluationResult:
        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    contextvars.copy_context().run,
                    self.evaluator.evaluate,
                    entry.access_blacklist,
                    ip,
                ),
                timeout=self.evaluation_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Rule evaluation timed out", entry=entry.name, ip=str(ip))
            return EvaluationResult(allowed=False, reason="Rule evaluation timed out", fail_closed=True)

        if self.metrics is not None:
            self.metrics.record_evaluation(result.evaluation_time_ms / 1000)
        return result

    def _record(self, outcome: str, reason: str):
        if self.metrics is not None:
            self.metrics.record_access_decision(outcome, reason)
