# ==============================================================================
# compsense/models.py
# ------------------------------------------------------------------------------
# Defines the database schema using SQLAlchemy ORM models. Each model that
# feeds the engine knows how to turn itself into the engine's record type.
# ==============================================================================

import json
import uuid
from datetime import datetime

from compsense import db
from compsense.calculator.accelerator import parse_tiers
from compsense.calculator.records import (EmployeeRecord, SalaryBandRecord, RsuGrantRecord,
                                          CommissionPlanRecord, CommissionAchievementRecord,
                                          ScenarioRecord, SCENARIO_DRAFT, GRANT_ACTIVE)

MONEY = db.Numeric(14, 2)


def _uuid():
    return str(uuid.uuid4())


class Employee(db.Model):
    """
    An employee as held by the HR system of record. The engine only reads it,
    except for annual_fixed and compa_ratio which an applied scenario rewrites.
    """
    __tablename__ = 'employee'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    employee_code = db.Column(db.String(32), unique=True, index=True)
    first_name = db.Column(db.String(64), nullable=False)
    last_name = db.Column(db.String(64), default='')
    band = db.Column(db.String(8), index=True, nullable=False)
    department = db.Column(db.String(64), index=True, nullable=False)
    gender = db.Column(db.String(16))
    date_of_joining = db.Column(db.Date, nullable=False)
    annual_fixed = db.Column(MONEY, nullable=False)
    compa_ratio = db.Column(db.Integer, nullable=True)
    performance_rating = db.Column(db.Numeric(3, 1), nullable=True)
    employment_type = db.Column(db.String(32), default='FULL_TIME')
    employment_status = db.Column(db.String(16), default='ACTIVE', index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rsu_grants = db.relationship('RsuGrant', backref='employee', lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name or ''}".strip()

    def to_record(self):
        return EmployeeRecord(
            id=self.id, band=self.band, annual_fixed=self.annual_fixed, gender=self.gender,
            date_of_joining=self.date_of_joining, department=self.department, name=self.full_name,
            performance_rating=self.performance_rating, employment_type=self.employment_type,
            compa_ratio=self.compa_ratio,
        )

    def __repr__(self):
        return f'<Employee {self.id}: {self.full_name} ({self.band})>'


class SalaryBand(db.Model):
    """
    Salary range for a band code. Several rows may share a code; the one in
    force is the latest effective_date not after the computation date.
    """
    __tablename__ = 'salary_band'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    band_code = db.Column(db.String(8), index=True, nullable=False)
    min_salary = db.Column(MONEY, nullable=False)
    mid_salary = db.Column(MONEY, nullable=False)
    max_salary = db.Column(MONEY, nullable=False)
    effective_date = db.Column(db.Date, nullable=False)
    job_area_id = db.Column(db.String(36), nullable=True)

    __table_args__ = (
        db.CheckConstraint('min_salary < mid_salary AND mid_salary < max_salary', name='_band_order_ck'),
    )

    def to_record(self):
        return SalaryBandRecord(
            band_code=self.band_code, min_salary=self.min_salary, mid_salary=self.mid_salary,
            max_salary=self.max_salary, effective_date=self.effective_date,
            job_area_id=self.job_area_id, id=self.id,
        )

    def __repr__(self):
        return f'<SalaryBand {self.band_code} from {self.effective_date}>'


class RsuGrant(db.Model):
    __tablename__ = 'rsu_grant'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    employee_id = db.Column(db.String(36), db.ForeignKey('employee.id'), nullable=False, index=True)
    grant_date = db.Column(db.Date, nullable=False)
    total_units = db.Column(db.Integer, nullable=False)
    # Mirror of what the vesting generator reports; refreshed, never incremented.
    vested_units = db.Column(db.Integer, default=0, nullable=False)
    cliff_months = db.Column(db.Integer, nullable=False)
    vesting_schedule_months = db.Column(db.Integer, nullable=False)
    # Copied from the policy at grant time so later setting edits never reshape the schedule.
    cliff_percent = db.Column(db.Numeric(7, 4), nullable=False)
    periodic_percent = db.Column(db.Numeric(7, 4), nullable=False)
    vesting_period_months = db.Column(db.Integer, nullable=False)
    price_at_grant = db.Column(MONEY, nullable=False, default=0)
    current_price = db.Column(MONEY, nullable=False, default=0)
    status = db.Column(db.String(16), default=GRANT_ACTIVE, index=True)

    # If a grant is deleted, its vesting events go with it.
    vesting_events = db.relationship('RsuVestingEvent', backref='rsu_grant', lazy='dynamic',
                                     cascade='all, delete-orphan', order_by='RsuVestingEvent.vesting_date')

    def to_record(self):
        return RsuGrantRecord(
            id=self.id, employee_id=self.employee_id, grant_date=self.grant_date,
            total_units=self.total_units, cliff_months=self.cliff_months,
            vesting_schedule_months=self.vesting_schedule_months,
            price_at_grant=self.price_at_grant, current_price=self.current_price, status=self.status,
            cliff_percent=self.cliff_percent, periodic_percent=self.periodic_percent,
            vesting_period_months=self.vesting_period_months,
        )

    def __repr__(self):
        return f'<RsuGrant {self.id}: {self.total_units} units ({self.status})>'


class RsuVestingEvent(db.Model):
    __tablename__ = 'rsu_vesting_event'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    rsu_grant_id = db.Column(db.String(36), db.ForeignKey('rsu_grant.id'), nullable=False, index=True)
    vesting_date = db.Column(db.Date, nullable=False, index=True)
    units_vesting = db.Column(db.Integer, nullable=False)
    is_vested = db.Column(db.Boolean, default=False, nullable=False)
    vested_at = db.Column(db.Date, nullable=True)

    # One tranche per grant per date
    __table_args__ = (db.UniqueConstraint('rsu_grant_id', 'vesting_date', name='_grant_vesting_date_uc'),)

    def to_dict(self):
        return {
            'id': self.id, 'rsuGrantId': self.rsu_grant_id,
            'vestingDate': self.vesting_date.isoformat(), 'unitsVesting': self.units_vesting,
            'isVested': self.is_vested, 'vestedAt': self.vested_at.isoformat() if self.vested_at else None,
        }


class CommissionPlan(db.Model):
    __tablename__ = 'commission_plan'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(128), nullable=False)
    plan_type = db.Column(db.String(16), default='SALES', nullable=False)
    target_variable_percent = db.Column(db.Numeric(5, 2), nullable=False)
    # Ordered list of {"threshold": ..., "multiplier": ...}
    accelerator_tiers = db.Column(db.JSON, default=list)
    eligibility_criteria = db.Column(db.JSON, nullable=True)

    achievements = db.relationship('CommissionAchievement', backref='plan', lazy='dynamic')

    def to_record(self):
        return CommissionPlanRecord(
            id=self.id, target_variable_percent=self.target_variable_percent, plan_type=self.plan_type,
            accelerator_tiers=parse_tiers(self.accelerator_tiers), name=self.name,
        )

    def __repr__(self):
        return f'<CommissionPlan {self.id}: {self.name} ({self.plan_type})>'


class CommissionAchievement(db.Model):
    __tablename__ = 'commission_achievement'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    employee_id = db.Column(db.String(36), db.ForeignKey('employee.id'), nullable=False, index=True)
    plan_id = db.Column(db.String(36), db.ForeignKey('commission_plan.id'), nullable=False)
    period = db.Column(db.String(16), nullable=False, index=True)
    target_amount = db.Column(MONEY, nullable=False)
    achieved_amount = db.Column(MONEY, nullable=False)
    achievement_percent = db.Column(db.Numeric(7, 2), nullable=False)
    payout_amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Ensure that there can only be one achievement per employee/plan/period combination
    __table_args__ = (db.UniqueConstraint('employee_id', 'plan_id', 'period', name='_employee_plan_period_uc'),)

    def to_record(self):
        return CommissionAchievementRecord(
            employee_id=self.employee_id, plan_id=self.plan_id, period=self.period,
            target_amount=self.target_amount, achieved_amount=self.achieved_amount,
            achievement_percent=self.achievement_percent, payout_amount=self.payout_amount,
        )


class Scenario(db.Model):
    """
    A named set of filter+action rules. DRAFT scenarios can be run any number
    of times; applying one commits its projections and makes it APPLIED for good.
    """
    __tablename__ = 'scenario'
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, default='')
    rules = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(16), default=SCENARIO_DRAFT, nullable=False, index=True)
    total_cost_impact = db.Column(MONEY, nullable=True)
    affected_employee_count = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    applied_at = db.Column(db.DateTime, nullable=True)

    def to_record(self):
        return ScenarioRecord(id=self.id, rules=tuple(self.rules or ()), status=self.status, name=self.name)

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'description': self.description, 'rules': self.rules,
            'status': self.status,
            'totalCostImpact': float(self.total_cost_impact) if self.total_cost_impact is not None else None,
            'affectedEmployeeCount': self.affected_employee_count,
            'appliedAt': self.applied_at.isoformat() if self.applied_at else None,
        }

    def __repr__(self):
        return f'<Scenario {self.id}: {self.name} ({self.status})>'


class AppSetting(db.Model):
    """
    Stores key-value pairs for the compensation policy constants, so the
    engine's behaviour can be tuned without touching code.
    """
    __tablename__ = 'app_setting'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    value = db.Column(db.String(512), nullable=False)
    description = db.Column(db.String(512))
    value_type = db.Column(db.String(32), default='string') # e.g., 'float', 'int', 'string', 'json'

    def __repr__(self):
        return f'<AppSetting {self.key}: {self.value}>'

    def get_value(self):
        """Casts the string value to its correct Python type."""
        if self.value_type == 'float':
            return float(self.value)
        if self.value_type == 'int':
            return int(self.value)
        if self.value_type == 'json':
            return json.loads(self.value)
        return self.value
