"""Statement policies applied before a query reaches the backend."""

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

_LEADING_COMMENTS = re.compile(r'^(?:\s|--[^\n]*(?:\n|$)|//[^\n]*(?:\n|$)|/\*.*?\*/)*', re.DOTALL)
_FIRST_WORD = re.compile(r'[A-Za-z_]+')


def first_keyword(statement: str) -> Optional[str]:
    """Return the upper-cased first keyword of a statement, skipping comments."""
    body = _LEADING_COMMENTS.sub('', statement or '', count=1)
    match = _FIRST_WORD.match(body)
    return match.group(0).upper() if match else None


@dataclass(frozen=True)
class PolicyViolation:
    """Why a statement was rejected."""
    keyword: Optional[str]
    message: str


class QueryPolicy:
    """Allows every statement."""

    def check(self, statement: str) -> Optional[PolicyViolation]:
        """Return a violation, or None if the statement may run."""
        return None


class ReadOnlyPolicy(QueryPolicy):
    """Only allows statements starting with one of the read keywords."""

    def __init__(self, read_keywords: Iterable[str] = ("SELECT",)) -> None:
        self.read_keywords: FrozenSet[str] = frozenset(k.upper() for k in read_keywords)

    def check(self, statement: str) -> Optional[PolicyViolation]:
        keyword = first_keyword(statement)
        if keyword in self.read_keywords:
            return None
        allowed = ', '.join(sorted(self.read_keywords))
        return PolicyViolation(
            keyword=keyword,
            message=f"Only {allowed} queries are allowed (got {keyword or 'empty statement'})",
        )
