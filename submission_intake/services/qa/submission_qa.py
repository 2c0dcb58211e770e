"""Deterministic consistency checks over the merged extraction result.

Every check is advisory: it appends ``"<kind>: <text>"`` strings to either
``warnings`` or ``confidence_flags`` and never raises.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from submission_intake.utils.logging import get_logger
from submission_intake.utils.value_parsing import parse_date, parse_number

LOGGER = get_logger(__name__)

MAX_DAYS_IN_PAST = 365
MAX_DAYS_IN_FUTURE = 365
MIN_BUILDING_LIMIT = 10_000
MAX_BUILDING_LIMIT = 100_000_000
MIN_SQ_FT = 100
MAX_SQ_FT = 10_000_000
MIN_YEAR_BUILT = 1800
MIN_LIMIT_PER_SQ_FT = 10
MAX_LIMIT_PER_SQ_FT = 1_000
MIN_COVERAGE_LIMIT = 10_000
COINSURANCE_RANGE = (50, 100)
LOSS_PERIOD_RANGE = (1, 10)
LIMIT_DIVERGENCE_RATIO = 0.20


@dataclass
class QAFlags:
    warnings: List[str] = field(default_factory=list)
    confidence_flags: List[str] = field(default_factory=list)

    def warn(self, kind: str, text: str) -> None:
        self.warnings.append(f"{kind}: {text}")

    def flag(self, kind: str, text: str) -> None:
        self.confidence_flags.append(f"{kind}: {text}")

    def to_dict(self) -> Dict[str, List[str]]:
        return {"warnings": list(self.warnings), "confidenceFlags": list(self.confidence_flags)}


def _money(value: float) -> str:
    return f"${value:,.0f}"


class SubmissionQA:
    """Runs all checks; ``today`` is injectable for date-relative checks."""

    def __init__(self, today: Optional[date] = None):
        self._today = today
        self.logger = LOGGER

    @property
    def today(self) -> date:
        return self._today or date.today()

    def check(self, data: Dict[str, Any], document_types: Optional[List[str]] = None) -> QAFlags:
        """Run every check over ``data``.

        Args:
            data: Merged result with submission/locations/coverage/lossHistory
            document_types: Classified attachment types of the message, used by
                the loss-run presence check
        """
        flags = QAFlags()
        data = data or {}
        submission = data.get("submission") or {}
        locations = [loc for loc in (data.get("locations") or []) if isinstance(loc, dict)]
        coverage = data.get("coverage") or {}
        loss_history = data.get("lossHistory") or {}

        self._check_dates(submission, flags)
        self._check_identity(submission, flags)
        building_limits = self._check_buildings(locations, flags)
        self._check_coverage(coverage, flags)
        self._check_loss_history(loss_history, document_types or [], flags)
        self._check_limit_consistency(building_limits, coverage, flags)

        self.logger.info(
            "QA complete",
            extra={"warnings": len(flags.warnings), "confidence_flags": len(flags.confidence_flags)},
        )
        return flags

    def _check_dates(self, submission: Dict[str, Any], flags: QAFlags) -> None:
        effective = parse_date(submission.get("effectiveDate"))
        expiration = parse_date(submission.get("expirationDate"))

        if effective and expiration and expiration <= effective:
            flags.warn(
                "expiration_before_effective",
                f"Expiration date {expiration.isoformat()} is not after effective date {effective.isoformat()}",
            )

        if effective:
            delta = (effective - self.today).days
            if delta < -MAX_DAYS_IN_PAST:
                flags.warn(
                    "effective_date_in_past",
                    f"Effective date {effective.isoformat()} is more than {MAX_DAYS_IN_PAST} days in the past",
                )
            elif delta > MAX_DAYS_IN_FUTURE:
                flags.warn(
                    "effective_date_too_far_future",
                    f"Effective date {effective.isoformat()} is more than {MAX_DAYS_IN_FUTURE} days ahead",
                )

        if submission.get("effectiveDate") and not effective:
            flags.flag("unparseable_effective_date", f"Could not read effective date {submission.get('effectiveDate')!r}")

    def _check_identity(self, submission: Dict[str, Any], flags: QAFlags) -> None:
        if not submission.get("namedInsured"):
            flags.flag("missing_named_insured", "Named insured was not found")
        if not submission.get("effectiveDate"):
            flags.flag("missing_effective_date", "Effective date was not found")

    def _check_buildings(self, locations: List[Dict[str, Any]], flags: QAFlags) -> List[float]:
        limits: List[float] = []
        for loc_index, location in enumerate(locations, start=1):
            buildings = [b for b in (location.get("buildings") or []) if isinstance(b, dict)]
            for bldg_index, building in enumerate(buildings, start=1):
                tag = f"location_{loc_index}_building_{bldg_index}"
                label = f"Location {loc_index}, building {bldg_index}"

                limit = parse_number(building.get("buildingLimit"))
                sq_ft = parse_number(building.get("buildingSqFt"))
                year_built = parse_number(building.get("yearBuilt"))
                year_renovated = parse_number(building.get("yearRenovated"))

                if limit is not None:
                    limits.append(limit)
                    if limit < MIN_BUILDING_LIMIT:
                        flags.warn(f"building_limit_too_low_{tag}", f"{label} limit {_money(limit)} is below {_money(MIN_BUILDING_LIMIT)}")
                    elif limit > MAX_BUILDING_LIMIT:
                        flags.warn(f"building_limit_too_high_{tag}", f"{label} limit {_money(limit)} exceeds {_money(MAX_BUILDING_LIMIT)}")

                if sq_ft is not None:
                    if sq_ft > MAX_SQ_FT:
                        flags.warn(f"square_footage_too_high_{tag}", f"{label} area {sq_ft:,.0f} sq ft exceeds {MAX_SQ_FT:,}")
                    elif sq_ft < MIN_SQ_FT:
                        flags.warn(f"square_footage_too_low_{tag}", f"{label} area {sq_ft:,.0f} sq ft is below {MIN_SQ_FT}")

                if year_built is not None:
                    if year_built < MIN_YEAR_BUILT:
                        flags.warn(f"year_built_too_old_{tag}", f"{label} year built {year_built:.0f} is before {MIN_YEAR_BUILT}")
                    elif year_built > self.today.year:
                        flags.warn(f"year_built_in_future_{tag}", f"{label} year built {year_built:.0f} is in the future")

                if year_built is not None and year_renovated is not None and year_renovated < year_built:
                    flags.warn(
                        f"renovation_before_built_{tag}",
                        f"{label} renovated {year_renovated:.0f} before it was built {year_built:.0f}",
                    )

                if limit is not None and sq_ft:
                    per_sq_ft = limit / sq_ft
                    if per_sq_ft > MAX_LIMIT_PER_SQ_FT:
                        flags.warn(f"limit_per_sqft_high_{tag}", f"{label} limit is ${per_sq_ft:,.2f} per sq ft")
                    elif per_sq_ft < MIN_LIMIT_PER_SQ_FT:
                        flags.warn(f"limit_per_sqft_low_{tag}", f"{label} limit is ${per_sq_ft:,.2f} per sq ft")
        return limits

    def _check_coverage(self, coverage: Dict[str, Any], flags: QAFlags) -> None:
        building_limit = parse_number(coverage.get("buildingLimit"))
        if building_limit is not None and building_limit < MIN_COVERAGE_LIMIT:
            flags.warn("coverage_limit_too_low", f"Building limit {_money(building_limit)} is below {_money(MIN_COVERAGE_LIMIT)}")

        deductible = parse_number(coverage.get("deductible"))
        if deductible is not None and deductible < 0:
            flags.warn("deductible_negative", f"Deductible {deductible:,.0f} is negative")

        coinsurance = parse_number(coverage.get("coinsurancePercent"))
        low, high = COINSURANCE_RANGE
        if coinsurance is not None and not low <= coinsurance <= high:
            flags.warn("coinsurance_percent_unusual", f"Coinsurance {coinsurance:g}% is outside {low}-{high}%")

    def _check_loss_history(self, loss_history: Dict[str, Any], document_types: List[str], flags: QAFlags) -> None:
        claims = parse_number(loss_history.get("numberOfClaims"))
        total_loss = parse_number(loss_history.get("totalIncurredLoss"))
        period = parse_number(loss_history.get("lossHistoryPeriodYears"))

        if claims == 0 and "loss_run" in document_types:
            flags.flag("no_losses_but_loss_run_present", "Zero claims reported although a loss run is attached")
        if claims and claims > 0 and total_loss is None:
            flags.warn("claims_without_loss_amount", f"{claims:.0f} claim(s) reported without a total loss amount")
        if total_loss is not None and total_loss < 0:
            flags.warn("negative_loss_amount", f"Total incurred loss {_money(total_loss)} is negative")

        low, high = LOSS_PERIOD_RANGE
        if period is not None and not low <= period <= high:
            flags.warn("unusual_loss_history_period", f"Loss history covers {period:g} years")

    def _check_limit_consistency(self, building_limits: List[float], coverage: Dict[str, Any], flags: QAFlags) -> None:
        declared = parse_number(coverage.get("buildingLimit"))
        if not building_limits or not declared:
            return
        total = sum(building_limits)
        if total <= 0:
            return
        if abs(total - declared) / total > LIMIT_DIVERGENCE_RATIO:
            flags.warn(
                "building_limit_mismatch",
                f"Sum of building limits {_money(total)} differs from declared building limit "
                f"{_money(declared)} by more than {LIMIT_DIVERGENCE_RATIO:.0%}",
            )
