"""Filter Predicate Engine.

A single generic predicate evaluator shared by every list and report view.
Views differ only in the criteria they build (see ``src.domain.views``), not
in filtering logic.

Architecture:
    - Pure domain service with zero infrastructure dependencies
    - Works on Pydantic models, plain objects and dicts alike (dotted paths)
    - Derived fields (computed at evaluation time) are injected per engine
      instance, so read-time classifications never get cached in records
"""

import logging
from collections.abc import Mapping, Set
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

from src.domain.filter_criteria import (
    DateRangeConstraint,
    FilterCriteria,
    MembershipConstraint,
    PresenceConstraint,
    TextSearch,
    normalize_value,
)

logger = logging.getLogger(__name__)

DerivedField = Callable[[Any], Any]


def resolve_field(record: Any, path: str) -> Any:
    """Resolve a dotted field path against a record.

    Parameters:
        record: Mapping or object
        path: Dotted path such as ``"subject.full_name"``

    Returns:
        The value, or None if any segment is missing
    """
    value = record
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def coerce_date(value: Any) -> Optional[date]:
    """Normalize datetimes and ISO strings to a calendar date (None if unparseable)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                logger.debug(f"Ignoring unparseable date value: {value!r}")
                return None
    return None


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, Set, Mapping)):
        return len(value) > 0
    return True


class FilterEngine:
    """Evaluates FilterCriteria against records.

    Checks run short-circuit in a fixed order, cheapest first: text search,
    categorical membership, date ranges, presence. A record passes only if
    every set constraint passes.

    Parameters:
        derived_fields: Named accessors computed at evaluation time; a derived
            name takes precedence over a stored field of the same name

    Example Usage:
        ```python
        engine = FilterEngine(derived_fields={
            "follow_up_urgency": lambda r: classify_follow_up(r.follow_up_date, today),
        })
        visible = engine.filter(records, view.build_criteria({"user": "nguyen"}))
        ```
    """

    def __init__(self, derived_fields: Optional[Mapping[str, DerivedField]] = None):
        self.derived_fields = dict(derived_fields or {})

    def value_of(self, record: Any, path: str) -> Any:
        accessor = self.derived_fields.get(path)
        if accessor is not None:
            return accessor(record)
        return resolve_field(record, path)

    def matches(self, record: Any, criteria: FilterCriteria) -> bool:
        """Return True if ``record`` satisfies every constraint in ``criteria``."""
        for search in criteria.text_searches:
            if not self._matches_text(record, search):
                return False
        for membership in criteria.memberships:
            if not self._matches_membership(record, membership):
                return False
        for date_range in criteria.date_ranges:
            if not self._matches_date_range(record, date_range):
                return False
        for presence in criteria.presence:
            if not self._matches_presence(record, presence):
                return False
        return True

    def filter(self, records: Iterable[Any], criteria: FilterCriteria) -> list:
        """Stable filter: matching records in their input order."""
        if criteria.is_empty:
            return list(records)
        return [record for record in records if self.matches(record, criteria)]

    def _matches_text(self, record: Any, search: TextSearch) -> bool:
        if not search.is_set:
            return True
        needle = search.term.strip().lower()
        for path in search.fields:
            value = normalize_value(self.value_of(record, path))
            if value is None:
                continue
            if needle in str(value).lower():
                return True
        return False

    def _matches_membership(self, record: Any, membership: MembershipConstraint) -> bool:
        if not membership.is_set:
            return True
        return normalize_value(self.value_of(record, membership.field)) in membership.allowed

    def _matches_date_range(self, record: Any, constraint: DateRangeConstraint) -> bool:
        if not constraint.is_set:
            return True
        for path in constraint.fields:
            value = coerce_date(self.value_of(record, path))
            if value is not None and constraint.window.contains(value):
                return True
        return False

    def _matches_presence(self, record: Any, constraint: PresenceConstraint) -> bool:
        if not constraint.is_set:
            return True
        return is_present(self.value_of(record, constraint.field)) == constraint.present


def matches(record: Any, criteria: FilterCriteria, derived_fields: Optional[Mapping[str, DerivedField]] = None) -> bool:
    """Module-level shortcut for ``FilterEngine(derived_fields).matches``."""
    return FilterEngine(derived_fields).matches(record, criteria)


def filter_records(
    records: Iterable[Any],
    criteria: FilterCriteria,
    derived_fields: Optional[Mapping[str, DerivedField]] = None
) -> list:
    """Module-level shortcut for ``FilterEngine(derived_fields).filter``."""
    return FilterEngine(derived_fields).filter(records, criteria)
