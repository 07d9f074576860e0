# ==============================================================================
# compsense/calculator/schema.py
# ------------------------------------------------------------------------------
# Defines the expected structure of a scenario rule.
# This schema is the single source of truth for the validator.
# ==============================================================================

from collections import namedtuple
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

RAISE_PERCENT = 'RAISE_PERCENT'
RAISE_FLAT = 'RAISE_FLAT'
SET_TO_BENCHMARK = 'SET_TO_BENCHMARK'
SET_COMPA_RATIO = 'SET_COMPA_RATIO'

EXPECTED_ACTIONS = {
    # type: whether a numeric 'value' is required
    RAISE_PERCENT: True,
    RAISE_FLAT: True,
    SET_TO_BENCHMARK: False,
    SET_COMPA_RATIO: True,
}

# Actions that price the projection off the employee's band midpoint.
BAND_ANCHORED_ACTIONS = {SET_TO_BENCHMARK, SET_COMPA_RATIO}

EXPECTED_FILTER_KEYS = {
    # key: shape of the value
    'band': 'code_or_list',
    'department': 'code_or_list',
    'gender': 'code',
    'compaRatio': 'range',
    'performanceRating': 'minimum',
    'tenure': 'minimum',
}

RANGE_KEYS = {'min', 'max'}
MINIMUM_KEYS = {'min'}


@dataclass(frozen=True)
class RuleFilter:
    bands: Optional[Tuple[str, ...]] = None
    departments: Optional[Tuple[str, ...]] = None
    gender: Optional[str] = None
    compa_min: Optional[Decimal] = None
    compa_max: Optional[Decimal] = None
    rating_min: Optional[Decimal] = None
    tenure_min_months: Optional[int] = None

    @property
    def needs_compa_ratio(self):
        return self.compa_min is not None or self.compa_max is not None


@dataclass(frozen=True)
class RuleAction:
    type: str
    value: Optional[Decimal] = None


ScenarioRule = namedtuple('ScenarioRule', ['filter', 'action'])
