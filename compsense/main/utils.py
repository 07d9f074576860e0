# ==============================================================================
# compsense/main/utils.py
# ------------------------------------------------------------------------------
# Glue between the database and the engine: loads the policy from the
# app_setting table and turns ORM rows into the engine's snapshot records.
# ==============================================================================

from flask import current_app, request

from compsense.calculator.errors import ValidationError
from compsense.calculator.policy import CompensationPolicy
from compsense.calculator.utils import to_date
from compsense.models import AppSetting, Employee, SalaryBand, RsuGrant, CommissionAchievement

POLICY_CACHE_KEY = 'compsense_policy'


def load_policy():
    """
    Builds the CompensationPolicy from the app_setting table. The policy is
    cached on the app until a setting changes (see invalidate_policy).
    """
    policy = current_app.extensions.get(POLICY_CACHE_KEY)
    if policy is None:
        current_app.logger.info("Loading compensation policy from database...")
        settings = {s.key: s.get_value() for s in AppSetting.query.all()}
        policy = CompensationPolicy.from_settings(settings)
        current_app.extensions[POLICY_CACHE_KEY] = policy
    return policy


def invalidate_policy():
    current_app.extensions.pop(POLICY_CACHE_KEY, None)


def load_employees():
    """Snapshot of every active employee."""
    rows = Employee.query.filter_by(employment_status='ACTIVE').order_by(Employee.id).all()
    return [row.to_record() for row in rows]


def load_bands():
    return [row.to_record() for row in SalaryBand.query.all()]


def load_grants():
    return [row.to_record() for row in RsuGrant.query.order_by(RsuGrant.id).all()]


def load_achievements(period=None):
    query = CommissionAchievement.query
    if period:
        query = query.filter_by(period=period)
    return [row.to_record() for row in query.all()]


def parse_as_of(value, default):
    """Parses a date given as an ISO string, falling back to ``default`` when empty."""
    if value in (None, ''):
        return default
    try:
        return to_date(value)
    except ValueError:
        raise ValidationError(f"'{value}' is not a valid date (expected YYYY-MM-DD)", details={'as_of': value})


def as_of_arg(default):
    return parse_as_of(request.args.get('as_of'), default)
