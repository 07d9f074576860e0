# ==============================================================================
# compsense/calculator/policy.py
# ------------------------------------------------------------------------------
# Holds every system-wide policy constant used by the engine (vesting
# fractions, scoring weights, compa-ratio range, ...). A policy is built from
# the AppSetting key/value table and handed to each component, so the same
# engine can be exercised against alternative constants.
# ==============================================================================

import logging
from decimal import Decimal

from .errors import PolicyError

DEFAULT_SETTINGS = {
    # key: default value (settings coming from the database override these)
    'CLIFF_PERCENT': 25,
    'PERIODIC_VEST_PERCENT': 6.25,
    'VESTING_PERIOD_MONTHS': 3,
    'DEFAULT_CLIFF_MONTHS': 12,
    'DEFAULT_VESTING_MONTHS': 48,
    'COMPA_RANGE_MIN': 80,
    'COMPA_RANGE_MAX': 120,
    'GENDER_GAP_SENSITIVITY': 5,
    'OUTLIER_WEIGHT': 2,
    'EQUITY_WEIGHTS': {'gender': 40, 'compa': 35, 'outlier': 25},
    'GENDER_GROUPS': ['MALE', 'FEMALE'],
    'SCENARIO_TOP_N': 10,
    'BAND_ORDER': ['A1', 'A2', 'P1', 'P2', 'P3', 'M1', 'M2', 'D0', 'D1', 'D2'],
    'RSU_MIN_BAND': 'P2',
    'RSU_MIN_TENURE_MONTHS': 12,
    'RSU_SUGGESTED_GRANT_RATIO': 0.5,
    'VARIABLE_PAY_PERIODS_PER_YEAR': 4,
}


def _decimal(value):
    # str() first so that 6.25 stays 6.25 and not its binary expansion
    return Decimal(str(value))


class CompensationPolicy:
    """
    An immutable bundle of policy constants.

    Build it with ``CompensationPolicy.from_settings(settings_dict)``; any key
    missing from the dictionary falls back to ``DEFAULT_SETTINGS``.
    """

    def __init__(self, settings):
        self.CLIFF_PERCENT = _decimal(settings['CLIFF_PERCENT'])
        self.PERIODIC_VEST_PERCENT = _decimal(settings['PERIODIC_VEST_PERCENT'])
        self.VESTING_PERIOD_MONTHS = int(settings['VESTING_PERIOD_MONTHS'])
        self.DEFAULT_CLIFF_MONTHS = int(settings['DEFAULT_CLIFF_MONTHS'])
        self.DEFAULT_VESTING_MONTHS = int(settings['DEFAULT_VESTING_MONTHS'])
        self.COMPA_RANGE_MIN = _decimal(settings['COMPA_RANGE_MIN'])
        self.COMPA_RANGE_MAX = _decimal(settings['COMPA_RANGE_MAX'])
        self.GENDER_GAP_SENSITIVITY = float(settings['GENDER_GAP_SENSITIVITY'])
        self.OUTLIER_WEIGHT = float(settings['OUTLIER_WEIGHT'])
        self.EQUITY_WEIGHTS = {k: float(v) for k, v in settings['EQUITY_WEIGHTS'].items()}
        self.GENDER_GROUPS = tuple(settings['GENDER_GROUPS'])
        self.SCENARIO_TOP_N = int(settings['SCENARIO_TOP_N'])
        self.BAND_ORDER = tuple(settings['BAND_ORDER'])
        self.RSU_MIN_BAND = settings['RSU_MIN_BAND']
        self.RSU_MIN_TENURE_MONTHS = int(settings['RSU_MIN_TENURE_MONTHS'])
        self.RSU_SUGGESTED_GRANT_RATIO = _decimal(settings['RSU_SUGGESTED_GRANT_RATIO'])
        self.VARIABLE_PAY_PERIODS_PER_YEAR = int(settings['VARIABLE_PAY_PERIODS_PER_YEAR'])
        self._validate()
        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"CompensationPolicy is read-only (tried to set '{name}')")
        super().__setattr__(name, value)

    @classmethod
    def from_settings(cls, settings_dict=None):
        """
        Args:
            settings_dict (dict): Raw key/value settings, e.g. loaded from AppSetting.

        Returns:
            CompensationPolicy: The validated policy.
        """
        merged = dict(DEFAULT_SETTINGS)
        for key, value in (settings_dict or {}).items():
            if key in DEFAULT_SETTINGS:
                merged[key] = value
            else:
                logging.debug(f"Ignoring setting '{key}': not a compensation policy key.")
        return cls(merged)

    def replace(self, **overrides):
        """Returns a copy of this policy with some keys overridden."""
        return CompensationPolicy.from_settings({**self.as_settings(), **overrides})

    def as_settings(self):
        return {
            'CLIFF_PERCENT': str(self.CLIFF_PERCENT),
            'PERIODIC_VEST_PERCENT': str(self.PERIODIC_VEST_PERCENT),
            'VESTING_PERIOD_MONTHS': self.VESTING_PERIOD_MONTHS,
            'DEFAULT_CLIFF_MONTHS': self.DEFAULT_CLIFF_MONTHS,
            'DEFAULT_VESTING_MONTHS': self.DEFAULT_VESTING_MONTHS,
            'COMPA_RANGE_MIN': str(self.COMPA_RANGE_MIN),
            'COMPA_RANGE_MAX': str(self.COMPA_RANGE_MAX),
            'GENDER_GAP_SENSITIVITY': self.GENDER_GAP_SENSITIVITY,
            'OUTLIER_WEIGHT': self.OUTLIER_WEIGHT,
            'EQUITY_WEIGHTS': dict(self.EQUITY_WEIGHTS),
            'GENDER_GROUPS': list(self.GENDER_GROUPS),
            'SCENARIO_TOP_N': self.SCENARIO_TOP_N,
            'BAND_ORDER': list(self.BAND_ORDER),
            'RSU_MIN_BAND': self.RSU_MIN_BAND,
            'RSU_MIN_TENURE_MONTHS': self.RSU_MIN_TENURE_MONTHS,
            'RSU_SUGGESTED_GRANT_RATIO': str(self.RSU_SUGGESTED_GRANT_RATIO),
            'VARIABLE_PAY_PERIODS_PER_YEAR': self.VARIABLE_PAY_PERIODS_PER_YEAR,
        }

    @property
    def cliff_fraction(self):
        return self.CLIFF_PERCENT / 100

    @property
    def periodic_fraction(self):
        return self.PERIODIC_VEST_PERCENT / 100

    def band_level(self, band_code):
        """Position of a band code in BAND_ORDER, or None if it is not ranked."""
        try:
            return self.BAND_ORDER.index(band_code)
        except ValueError:
            return None

    def _validate(self):
        problems = []
        if set(self.EQUITY_WEIGHTS) != {'gender', 'compa', 'outlier'}:
            problems.append("EQUITY_WEIGHTS must define exactly 'gender', 'compa' and 'outlier'")
        elif abs(sum(self.EQUITY_WEIGHTS.values()) - 100) > 1e-9:
            problems.append(f"EQUITY_WEIGHTS must sum to 100, got {sum(self.EQUITY_WEIGHTS.values())}")
        if any(w < 0 for w in self.EQUITY_WEIGHTS.values()):
            problems.append('EQUITY_WEIGHTS must not be negative')
        if not (0 <= self.CLIFF_PERCENT <= 100):
            problems.append('CLIFF_PERCENT must be between 0 and 100')
        if not (0 < self.PERIODIC_VEST_PERCENT <= 100):
            problems.append('PERIODIC_VEST_PERCENT must be greater than 0 and at most 100')
        if self.VESTING_PERIOD_MONTHS <= 0:
            problems.append('VESTING_PERIOD_MONTHS must be positive')
        if self.COMPA_RANGE_MIN >= self.COMPA_RANGE_MAX:
            problems.append('COMPA_RANGE_MIN must be below COMPA_RANGE_MAX')
        if len(self.GENDER_GROUPS) != 2:
            problems.append('GENDER_GROUPS must name exactly two groups')
        if self.SCENARIO_TOP_N < 0:
            problems.append('SCENARIO_TOP_N must not be negative')
        if self.RSU_MIN_BAND not in self.BAND_ORDER:
            problems.append(f"RSU_MIN_BAND '{self.RSU_MIN_BAND}' is not in BAND_ORDER")
        if self.VARIABLE_PAY_PERIODS_PER_YEAR <= 0:
            problems.append('VARIABLE_PAY_PERIODS_PER_YEAR must be positive')
        if problems:
            raise PolicyError('Invalid compensation policy', details=problems)


DEFAULT_POLICY = CompensationPolicy.from_settings()
