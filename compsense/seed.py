import json
from datetime import date

from compsense import db
from compsense.calculator.policy import DEFAULT_SETTINGS as POLICY_DEFAULTS
from compsense.models import AppSetting, SalaryBand

SETTING_DESCRIPTIONS = {
    'CLIFF_PERCENT': 'Percent of a grant released at the cliff',
    'PERIODIC_VEST_PERCENT': 'Percent of a grant released each period after the cliff',
    'VESTING_PERIOD_MONTHS': 'Months between periodic vesting tranches',
    'DEFAULT_CLIFF_MONTHS': 'Cliff length used when a grant does not specify one',
    'DEFAULT_VESTING_MONTHS': 'Vesting schedule length used when a grant does not specify one',
    'COMPA_RANGE_MIN': 'Lowest compa-ratio counted as in range by the equity score',
    'COMPA_RANGE_MAX': 'Highest compa-ratio counted as in range by the equity score',
    'GENDER_GAP_SENSITIVITY': 'Points deducted from the gender component per percent of gap',
    'OUTLIER_WEIGHT': 'Points deducted from the outlier component per percent of outliers',
    'EQUITY_WEIGHTS': 'Weights of the equity score components, must sum to 100 (JSON)',
    'GENDER_GROUPS': 'The two gender groups compared by the gender gap (JSON)',
    'SCENARIO_TOP_N': 'Number of largest changes reported by a scenario run',
    'BAND_ORDER': 'Band codes from lowest to highest level (JSON)',
    'RSU_MIN_BAND': 'Lowest band eligible for RSU grants',
    'RSU_MIN_TENURE_MONTHS': 'Tenure required before an employee shows up in the RSU eligibility gap',
    'RSU_SUGGESTED_GRANT_RATIO': 'Suggested grant value as a fraction of annual fixed pay',
    'VARIABLE_PAY_PERIODS_PER_YEAR': 'Variable pay periods per year used for default targets',
}

DEFAULT_BANDS = [
    # (band_code, min, mid, max)
    ('A1', 300000, 400000, 500000),
    ('A2', 450000, 600000, 750000),
    ('P1', 700000, 950000, 1200000),
    ('P2', 1100000, 1450000, 1800000),
    ('P3', 1400000, 1900000, 2400000),
    ('M1', 2000000, 2600000, 3200000),
    ('M2', 2800000, 3500000, 4200000),
    ('D0', 3800000, 4700000, 5600000),
    ('D1', 5000000, 6200000, 7400000),
    ('D2', 6500000, 8000000, 9500000),
]


def _setting_row(value):
    """Returns (value string, value_type) as stored in the app_setting table."""
    if isinstance(value, (dict, list)):
        return json.dumps(value), 'json'
    if isinstance(value, bool):
        return str(value), 'string'
    if isinstance(value, int):
        return str(value), 'int'
    if isinstance(value, float):
        return str(value), 'float'
    return str(value), 'string'


def seed_data():
    """Populates the database with default policy settings and salary bands."""
    # Seed App Settings
    for key, default in POLICY_DEFAULTS.items():
        setting = AppSetting.query.filter_by(key=key).first()
        if not setting: # Only add if it doesn't exist
            value, value_type = _setting_row(default)
            setting = AppSetting(key=key, value=value, description=SETTING_DESCRIPTIONS.get(key, ''),
                                 value_type=value_type)
            db.session.add(setting)
            print(f'Seeding setting: {key}')

    # Seed Salary Bands
    if SalaryBand.query.count() == 0:
        print('Seeding default salary bands...')
        effective = date(date.today().year, 1, 1)
        for code, low, mid, high in DEFAULT_BANDS:
            db.session.add(SalaryBand(band_code=code, min_salary=low, mid_salary=mid,
                                      max_salary=high, effective_date=effective))

    db.session.commit()
    print('Seeding complete.')
