"""List View Definitions.

The strategy table that replaces one hand-written filter function per tab:
each view declares its named search groups and the base criteria every query
through it carries. Request-specific criteria are ANDed onto the base.
"""

from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.domain.enums import HealthCheckResultStatus
from src.domain.filter_criteria import FilterCriteria, MembershipConstraint, TextSearch
from src.domain.ports import ValidationError


class ViewDefinition(BaseModel):
    """Configuration of one list view.

    Parameters:
        name: View key used by the API and CLI
        title: Human-readable label
        search_groups: Group name -> dotted field paths searched together
        base_criteria: Constraints always applied by this view
    """

    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    search_groups: Mapping[str, tuple[str, ...]] = Field(default_factory=dict)
    base_criteria: FilterCriteria = FilterCriteria()

    def build_criteria(
        self,
        search_terms: Optional[Mapping[str, Optional[str]]] = None,
        criteria: Optional[FilterCriteria] = None
    ) -> FilterCriteria:
        """Combine base criteria, search terms and request criteria.

        Parameters:
            search_terms: Group name -> term; None/blank terms are unconstrained
            criteria: Additional request criteria

        Raises:
            ValidationError: If a search term names a group this view does not declare
        """
        searches = []
        for group, term in (search_terms or {}).items():
            if group not in self.search_groups:
                raise ValidationError(
                    f"View '{self.name}' has no search group '{group}'",
                    guard="search_group",
                    details={"available": sorted(self.search_groups)},
                )
            searches.append(TextSearch(name=group, fields=self.search_groups[group], term=term))

        combined = self.base_criteria & FilterCriteria(text_searches=tuple(searches))
        if criteria is not None:
            combined = combined & criteria
        return combined


def _status_view(name: str, title: str, search_groups, *statuses: HealthCheckResultStatus) -> ViewDefinition:
    return ViewDefinition(
        name=name,
        title=title,
        search_groups=search_groups,
        base_criteria=FilterCriteria(
            memberships=(MembershipConstraint(field="status", allowed=statuses),),
        ),
    )


HEALTH_CHECK_RESULT_SEARCH_GROUPS = {
    "user": ("subject.full_name", "subject.user_name", "subject.email"),
    "staff": ("staff.full_name", "staff.user_name", "staff.email"),
    "code": ("code",),
}

HEALTH_CHECK_RESULT_VIEWS: dict[str, ViewDefinition] = {
    view.name: view
    for view in (
        _status_view(
            "all",
            "All Results",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            *(s for s in HealthCheckResultStatus
              if s not in (HealthCheckResultStatus.SOFT_DELETED, HealthCheckResultStatus.APPROVED)),
        ),
        _status_view(
            "waiting-for-approval",
            "Waiting for Approval",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            HealthCheckResultStatus.WAITING_FOR_APPROVAL,
        ),
        _status_view(
            "follow-up",
            "Follow-up Required",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            HealthCheckResultStatus.FOLLOW_UP_REQUIRED,
        ),
        _status_view(
            "no-follow-up",
            "No Follow-up Required",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            HealthCheckResultStatus.NO_FOLLOW_UP_REQUIRED,
        ),
        _status_view(
            "adjustment",
            "Cancelled for Adjustment",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            HealthCheckResultStatus.CANCELLED_FOR_ADJUSTMENT,
        ),
        _status_view(
            "soft-deleted",
            "Soft Deleted",
            HEALTH_CHECK_RESULT_SEARCH_GROUPS,
            HealthCheckResultStatus.SOFT_DELETED,
        ),
    )
}

# Health insurance records arrive as camelCase dicts from the insurance service
_INSURANCE_USER = ("user.fullName", "user.userName", "user.email")
_INSURANCE_USER_AND_CARD = _INSURANCE_USER + ("fullName", "healthInsuranceNumber")


def _insurance_view(name: str, title: str, search_fields: tuple[str, ...], *memberships) -> ViewDefinition:
    return ViewDefinition(
        name=name,
        title=title,
        search_groups={"user": search_fields},
        base_criteria=FilterCriteria(memberships=memberships),
    )


def _insurance_status(*statuses: str) -> MembershipConstraint:
    return MembershipConstraint(field="status", allowed=statuses)


HEALTH_INSURANCE_VIEWS: dict[str, ViewDefinition] = {
    view.name: view
    for view in (
        _insurance_view("verified", "Verified", _INSURANCE_USER_AND_CARD, _insurance_status("Completed")),
        # Pending cards the owner has not yet confirmed
        _insurance_view(
            "initial",
            "Initial",
            _INSURANCE_USER,
            _insurance_status("Pending"),
            MembershipConstraint(field="verificationStatus", allowed=("Unverified",)),
        ),
        _insurance_view(
            "expired-update", "Update Deadline Expired", _INSURANCE_USER, _insurance_status("DeadlineExpired")
        ),
        _insurance_view("expired", "Expired", _INSURANCE_USER_AND_CARD, _insurance_status("Expired")),
        _insurance_view("uninsured", "Uninsured", _INSURANCE_USER, _insurance_status("NotApplicable")),
        _insurance_view(
            "soft-deleted",
            "Soft Deleted",
            _INSURANCE_USER + ("healthInsuranceNumber",),
            _insurance_status("SoftDeleted"),
        ),
    )
}


def get_view(name: str, registry: Optional[Mapping[str, ViewDefinition]] = None) -> ViewDefinition:
    """Look up a view by name (health check result views by default).

    Raises:
        ValidationError: If the view is unknown
    """
    views = HEALTH_CHECK_RESULT_VIEWS if registry is None else registry
    try:
        return views[name]
    except KeyError:
        raise ValidationError(
            f"Unknown view '{name}'",
            guard="view",
            details={"available": sorted(views)},
        ) from None
