"""Filter Criteria Value Objects.

Immutable, typed descriptions of what a list view wants to see. A criteria
object is evaluated by the FilterEngine; it never touches records itself.

Semantics:
    - Text search: case-insensitive substring of ANY field in the group,
      groups AND-combined
    - Membership: value must be in the allowed set; an empty set is no constraint
    - Date range: inclusive on both ends, either bound optional; with two
      fields the record passes if EITHER date falls in the window
    - Presence: True = must be non-empty, False = must be empty, None = no constraint

An unset criterion always passes.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def normalize_value(value: Any) -> Any:
    """Compare enums by their wire value so ``Status.X`` and ``"X"`` are equal."""
    if isinstance(value, Enum):
        return value.value
    return value


class DateRange(BaseModel):
    """Inclusive date window. A missing bound leaves that side open."""

    model_config = ConfigDict(frozen=True)

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def validate_bounds(self) -> "DateRange":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")
        return self

    @property
    def is_all_time(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


# Explicit "no date restriction" sentinel
ALL_TIME = DateRange()


class TextSearch(BaseModel):
    """One search term matched against a named group of candidate fields."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Group name, e.g. 'user' or 'staff'")
    fields: tuple[str, ...] = Field(..., min_length=1, description="Dotted field paths searched together")
    term: Optional[str] = Field(None, description="Search term; empty or None means unconstrained")

    @property
    def is_set(self) -> bool:
        return bool(self.term and self.term.strip())


class MembershipConstraint(BaseModel):
    """Field value must be one of ``allowed``."""

    model_config = ConfigDict(frozen=True)

    field: str
    allowed: tuple[Any, ...] = ()

    @field_validator("allowed", mode="before")
    @classmethod
    def normalize_allowed(cls, v) -> tuple:
        if v is None:
            return ()
        if isinstance(v, (str, Enum)):
            v = (v,)
        return tuple(normalize_value(item) for item in v)

    @property
    def is_set(self) -> bool:
        return len(self.allowed) > 0


class DateRangeConstraint(BaseModel):
    """One or two date fields tested against a window.

    With two fields (e.g. ``valid_from``/``valid_to``) the record passes when at
    least one of its dates falls inside the window.
    """

    model_config = ConfigDict(frozen=True)

    fields: tuple[str, ...] = Field(..., min_length=1, max_length=2)
    window: DateRange = ALL_TIME

    @property
    def is_set(self) -> bool:
        return not self.window.is_all_time


class PresenceConstraint(BaseModel):
    """Tri-state check that a field is (or is not) populated."""

    model_config = ConfigDict(frozen=True)

    field: str
    present: Optional[bool] = None

    @property
    def is_set(self) -> bool:
        return self.present is not None


class FilterCriteria(BaseModel):
    """Immutable set of filter constraints for one query.

    Criteria compose by conjunction: ``a & b`` keeps every constraint of both,
    so ``filter(filter(records, a), b) == filter(records, a & b)``.

    Example:
        ```python
        criteria = FilterCriteria(
            memberships=(MembershipConstraint(field="status", allowed=("FollowUpRequired",)),),
            date_ranges=(DateRangeConstraint(
                fields=("follow_up_date",),
                window=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
            ),),
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    text_searches: tuple[TextSearch, ...] = ()
    memberships: tuple[MembershipConstraint, ...] = ()
    date_ranges: tuple[DateRangeConstraint, ...] = ()
    presence: tuple[PresenceConstraint, ...] = ()

    def __and__(self, other: "FilterCriteria") -> "FilterCriteria":
        if not isinstance(other, FilterCriteria):
            return NotImplemented
        return FilterCriteria(
            text_searches=self.text_searches + other.text_searches,
            memberships=self.memberships + other.memberships,
            date_ranges=self.date_ranges + other.date_ranges,
            presence=self.presence + other.presence,
        )

    @property
    def is_empty(self) -> bool:
        """True when no constraint would exclude anything."""
        constraints = (*self.text_searches, *self.memberships, *self.date_ranges, *self.presence)
        return not any(c.is_set for c in constraints)
