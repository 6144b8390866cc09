"""
IP category classifier backed by an ipcat CSV database.

Each row is ``start,end,name,url`` with dotted-quad IPv4 bounds, e.g.::

    1.0.0.0,1.0.0.255,Cloudflare,https://www.cloudflare.com/
"""

import bisect
import csv
from dataclasses import dataclass
from ipaddress import IPv4Address, ip_address
from typing import Iterable, List, Optional, TextIO, Union

from shared.errors import CategoryLookupError, ValidationError
from ..rules.models import IPAddress, normalize_address


@dataclass(frozen=True)
class Interval:
    """Inclusive IPv4 range with its category."""
    left: int
    right: int
    name: str
    url: str = ""


class IPCatClassifier:
    """Sorted interval set with binary search lookup."""

    def __init__(self, intervals: Iterable[Interval] = ()):
        self.intervals: List[Interval] = sorted(intervals, key=lambda i: i.left)
        self._lefts = [interval.left for interval in self.intervals]

    @classmethod
    def from_csv(cls, stream: TextIO) -> "IPCatClassifier":
        intervals = []
        for line_number, row in enumerate(csv.reader(stream), start=1):
            if not row or not "".join(row).strip():
                continue
            if len(row) < 3:
                raise ValidationError(
                    f"ipcat line {line_number}: expected start,end,name[,url]",
                    {"row": row},
                )
            try:
                left = int(IPv4Address(row[0].strip()))
                right = int(IPv4Address(row[1].strip()))
            except ValueError as e:
                raise ValidationError(f"ipcat line {line_number}: {e}", {"row": row})
            if right < left:
                raise ValidationError(f"ipcat line {line_number}: range end before start", {"row": row})
            url = row[3].strip() if len(row) > 3 else ""
            intervals.append(Interval(left, right, row[2].strip(), url))
        return cls(intervals)

    @classmethod
    def open(cls, path: str) -> "IPCatClassifier":
        with open(path, newline="", encoding="utf-8") as stream:
            return cls.from_csv(stream)

    def __len__(self) -> int:
        return len(self.intervals)

    def lookup(self, ip: Union[IPAddress, str]) -> Optional[Interval]:
        if isinstance(ip, str):
            try:
                ip = ip_address(ip)
            except ValueError as e:
                raise CategoryLookupError(str(e), {"ip": ip})
        ip = normalize_address(ip)
        if not isinstance(ip, IPv4Address):
            return None

        value = int(ip)
        index = bisect.bisect_right(self._lefts, value) - 1
        if index >= 0 and self.intervals[index].right >= value:
            return self.intervals[index]
        return None

    def classify(self, ip: Union[IPAddress, str]) -> Optional[str]:
        """Category name for the address, or None when it has none."""
        interval = self.lookup(ip)
        return interval.name if interval else None
