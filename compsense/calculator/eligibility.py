# ==============================================================================
# compsense/calculator/eligibility.py
# ------------------------------------------------------------------------------
# Eligibility criteria for plans, benefits and equity grants, expressed as a
# list of tagged predicates and evaluated by a small interpreter. A new
# predicate kind needs one evaluator in EVALUATORS and nothing else.
# ==============================================================================

from collections import namedtuple

from .errors import IneligibleEmployee, ValidationError
from .policy import DEFAULT_POLICY
from .records import GRANT_ACTIVE
from .utils import months_between, to_date, to_decimal

Predicate = namedtuple('Predicate', ['kind', 'value'])

MIN_BAND_LEVEL = 'minBandLevel'
MIN_TENURE_MONTHS = 'minTenureMonths'
MIN_PERFORMANCE_RATING = 'minPerformanceRating'
GENDERS = 'genders'
EMPLOYMENT_TYPES = 'employmentTypes'

# Stored criteria objects use these shorter keys for some predicates.
LEGACY_KEYS = {
    'minBand': MIN_BAND_LEVEL,
    'minTenure': MIN_TENURE_MONTHS,
    'minRating': MIN_PERFORMANCE_RATING,
}


def _min_band_level(employee, band_code, ctx):
    policy = ctx['policy']
    required, actual = policy.band_level(band_code), policy.band_level(employee.band)
    if actual is None or actual < required:
        return f"Requires band {band_code}+"
    return None


def _min_tenure(employee, months, ctx):
    tenure = months_between(employee.date_of_joining, ctx['as_of'])
    if tenure < months:
        return f"Requires {months} months tenure (current: {tenure}mo)"
    return None


def _min_rating(employee, rating, ctx):
    if employee.performance_rating is None or employee.performance_rating < rating:
        return f"Requires performance rating >= {rating}"
    return None


def _genders(employee, allowed, ctx):
    if employee.gender not in allowed:
        return f"Requires gender: {', '.join(allowed)}"
    return None


def _employment_types(employee, allowed, ctx):
    if employee.employment_type not in allowed:
        return f"Requires employment type: {', '.join(allowed)}"
    return None


EVALUATORS = {
    MIN_BAND_LEVEL: _min_band_level,
    MIN_TENURE_MONTHS: _min_tenure,
    MIN_PERFORMANCE_RATING: _min_rating,
    GENDERS: _genders,
    EMPLOYMENT_TYPES: _employment_types,
}


def _coerce(kind, value, policy):
    if kind == MIN_BAND_LEVEL:
        if policy.band_level(value) is None:
            raise ValidationError(f"Unknown band '{value}' in eligibility criteria", details={'kind': kind})
        return value
    if kind == MIN_TENURE_MONTHS:
        return int(value)
    if kind == MIN_PERFORMANCE_RATING:
        return to_decimal(value, kind)
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def parse_criteria(raw, policy=None):
    """
    Turns a loosely-typed criteria object, e.g. ``{"minBand": "P2", "minTenure": 12}``,
    into a tuple of Predicates. Unknown keys are rejected.
    """
    policy = policy or DEFAULT_POLICY
    if not raw:
        return ()
    if not isinstance(raw, dict):
        raise ValidationError('Eligibility criteria must be an object', details={'criteria': raw})
    predicates = []
    for key, value in raw.items():
        kind = LEGACY_KEYS.get(key, key)
        if kind not in EVALUATORS:
            raise ValidationError(f"Unknown eligibility criterion '{key}'", details={'criterion': key})
        if value is None:
            continue
        predicates.append(Predicate(kind, _coerce(kind, value, policy)))
    return tuple(predicates)


def evaluate_eligibility(predicates, employee, as_of, policy=None):
    """
    Returns:
        tuple: (eligible, failed) where ``failed`` lists a reason per unmet predicate.
    """
    ctx = {'policy': policy or DEFAULT_POLICY, 'as_of': to_date(as_of)}
    failed = []
    for predicate in predicates:
        reason = EVALUATORS[predicate.kind](employee, predicate.value, ctx)
        if reason:
            failed.append(reason)
    return not failed, failed


def rsu_grant_criteria(policy=None):
    policy = policy or DEFAULT_POLICY
    return (Predicate(MIN_BAND_LEVEL, policy.RSU_MIN_BAND),)


def ensure_rsu_eligible(employee, as_of, policy=None):
    eligible, failed = evaluate_eligibility(rsu_grant_criteria(policy), employee, as_of, policy)
    if not eligible:
        raise IneligibleEmployee(f"Employee {employee.id} is not eligible for RSU grants", details=failed)


def rsu_eligibility_gap(employees, grants, as_of, policy=None):
    """
    Employees who qualify for equity (band and tenure) but hold no active
    grant, with a suggested grant value.
    """
    policy = policy or DEFAULT_POLICY
    as_of = to_date(as_of)
    criteria = rsu_grant_criteria(policy) + (Predicate(MIN_TENURE_MONTHS, policy.RSU_MIN_TENURE_MONTHS),)
    holders = {g.employee_id for g in grants if g.status == GRANT_ACTIVE}
    gap = []
    for emp in employees:
        if emp.id in holders:
            continue
        eligible, _ = evaluate_eligibility(criteria, emp, as_of, policy)
        if not eligible:
            continue
        gap.append({
            'employee_id': emp.id,
            'name': emp.name,
            'band': emp.band,
            'department': emp.department,
            'annual_fixed': emp.annual_fixed,
            'suggested_grant_value': emp.annual_fixed * policy.RSU_SUGGESTED_GRANT_RATIO,
            'tenure_months': months_between(emp.date_of_joining, as_of),
        })
    return gap
