"""
Entry data model.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..rules.models import Rule, RuleSet, CommentRule
from ..rules.parser import parse_line, parse_rules


def rule_to_record(rule: Rule) -> Dict[str, Any]:
    """Serializable form of a rule: its source text and comment."""
    return {"rule": rule.source(), "comment": rule.comment}


def rule_from_record(record: Dict[str, Any]) -> Rule:
    text = record.get("rule", "")
    comment = record.get("comment", "")
    if not text.lstrip("!").strip():
        return CommentRule(negated=text.startswith("!"), comment=comment)

    rule = parse_line(text, strip_comment=False)
    if rule is None:
        return CommentRule(comment=comment)
    if comment and not isinstance(rule, CommentRule):
        rule = replace(rule, comment=comment)
    return rule


def rules_to_records(rules: RuleSet) -> List[Dict[str, Any]]:
    return [rule_to_record(rule) for rule in rules]


def rules_from_value(value: Any) -> RuleSet:
    """Rules from stored records, or from rule-language text."""
    if value is None:
        return RuleSet()
    if isinstance(value, str):
        return parse_rules(value)
    return RuleSet([rule_from_record(record) for record in value])


@dataclass
class Entry:
    """A named share guarded by an access rule list."""
    name: str
    url: str = ""
    filename: str = ""
    content_type: str = ""
    redirect: bool = False
    creation: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    access_expire: bool = False
    access_expire_count: int = 0
    access_count: int = 0
    access_blacklist: RuleSet = field(default_factory=RuleSet)
    access_blacklist_count: int = 0
    access_train: bool = False

    @property
    def is_file(self) -> bool:
        return not self.url

    def is_expired(self) -> bool:
        """Expired once the allowed number of accesses has been used."""
        return self.access_expire and self.access_count >= self.access_expire_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "filename": self.filename,
            "content_type": self.content_type,
            "redirect": self.redirect,
            "creation": self.creation.isoformat(),
            "access_expire": self.access_expire,
            "access_expire_count": self.access_expire_count,
            "access_count": self.access_count,
            "access_blacklist": rules_to_records(self.access_blacklist),
            "access_blacklist_count": self.access_blacklist_count,
            "access_train": self.access_train,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        creation = data.get("creation")
        return cls(
            name=data["name"],
            url=data.get("url", ""),
            filename=data.get("filename", ""),
            content_type=data.get("content_type", ""),
            redirect=bool(data.get("redirect", False)),
            creation=datetime.fromisoformat(creation) if creation else datetime.now(timezone.utc),
            access_expire=bool(data.get("access_expire", False)),
            access_expire_count=int(data.get("access_expire_count", 0)),
            access_count=int(data.get("access_count", 0)),
            access_blacklist=rules_from_value(data.get("access_blacklist")),
            access_blacklist_count=int(data.get("access_blacklist_count", 0)),
            access_train=bool(data.get("access_train", False)),
        )
