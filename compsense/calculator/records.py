# ==============================================================================
# compsense/calculator/records.py
# ------------------------------------------------------------------------------
# Typed in-memory snapshots the engine computes over. The persistence layer
# converts its rows into these records; the engine never sees ORM objects.
# ==============================================================================

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

from .errors import ValidationError

GRANT_ACTIVE = 'ACTIVE'
GRANT_CANCELLED = 'CANCELLED'
GRANT_FULLY_VESTED = 'FULLY_VESTED'
GRANT_STATUSES = (GRANT_ACTIVE, GRANT_CANCELLED, GRANT_FULLY_VESTED)

PLAN_TYPES = ('SALES', 'PERFORMANCE', 'HYBRID')

SCENARIO_DRAFT = 'DRAFT'
SCENARIO_APPLIED = 'APPLIED'


def jsonable(value):
    """Recursively converts dates and decimals so the value can go through json.dumps."""
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _camel(key):
    head, *rest = key.split('_')
    return head + ''.join(part.title() for part in rest)


def camelize(value):
    """Renames snake_case dict keys to the camelCase the reporting layer consumes."""
    if isinstance(value, dict):
        return {_camel(k): camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    return value


@dataclass(frozen=True)
class EmployeeRecord:
    id: str
    band: str
    annual_fixed: Decimal
    gender: str
    date_of_joining: date
    department: str
    name: str = ''
    performance_rating: Optional[Decimal] = None
    employment_type: Optional[str] = None
    compa_ratio: Optional[int] = None


@dataclass(frozen=True)
class SalaryBandRecord:
    band_code: str
    min_salary: Decimal
    mid_salary: Decimal
    max_salary: Decimal
    effective_date: date
    job_area_id: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        if not (self.min_salary < self.mid_salary < self.max_salary):
            raise ValidationError(
                f"Salary band '{self.band_code}' must satisfy min < mid < max",
                details={'min': str(self.min_salary), 'mid': str(self.mid_salary), 'max': str(self.max_salary)},
            )


@dataclass(frozen=True)
class RsuGrantRecord:
    id: str
    employee_id: str
    grant_date: date
    total_units: int
    cliff_months: int
    vesting_schedule_months: int
    price_at_grant: Decimal = Decimal('0')
    current_price: Decimal = Decimal('0')
    status: str = GRANT_ACTIVE
    # Vesting terms fixed when the grant was made; None means "use the policy".
    cliff_percent: Optional[Decimal] = None
    periodic_percent: Optional[Decimal] = None
    vesting_period_months: Optional[int] = None


@dataclass(frozen=True)
class VestingEvent:
    rsu_grant_id: str
    vesting_date: date
    units_vesting: int
    is_vested: bool
    vested_at: Optional[date] = None

    def to_dict(self):
        return camelize(jsonable(asdict(self)))


@dataclass(frozen=True)
class AcceleratorTier:
    threshold: Decimal
    multiplier: Decimal

    def to_dict(self):
        return {'threshold': float(self.threshold), 'multiplier': float(self.multiplier)}


@dataclass(frozen=True)
class CommissionPlanRecord:
    id: str
    target_variable_percent: Decimal
    plan_type: str = 'SALES'
    accelerator_tiers: Tuple[AcceleratorTier, ...] = ()
    name: str = ''


@dataclass(frozen=True)
class CommissionAchievementRecord:
    employee_id: str
    plan_id: str
    period: str
    target_amount: Decimal
    achieved_amount: Decimal
    achievement_percent: Decimal
    payout_amount: Decimal

    def to_dict(self):
        return camelize(jsonable(asdict(self)))


@dataclass(frozen=True)
class ScenarioRecord:
    id: str
    rules: tuple
    status: str = SCENARIO_DRAFT
    name: str = ''


@dataclass
class EquityComponents:
    gender_score: Optional[float] = None
    compa_score: Optional[float] = None
    outlier_score: Optional[float] = None


@dataclass
class EquityScore:
    score: Optional[float]
    components: EquityComponents = field(default_factory=EquityComponents)
    total_employees: int = 0
    scored_employees: int = 0
    gap_percent: Optional[float] = None
    outlier_count: int = 0
    compa_in_range_count: int = 0
    band_in_range_count: int = 0
    band_in_range_percent: Optional[float] = None
    excluded: list = field(default_factory=list)

    def to_dict(self):
        return camelize(jsonable(asdict(self)))
