# ==============================================================================
# compsense/main/services.py
# ------------------------------------------------------------------------------
# Orchestration around the engine: loads snapshots, calls the pure engine
# functions and persists their results inside a single transaction.
# Every write path rolls the session back on failure before re-raising.
# ==============================================================================

import json
import threading
import uuid
from datetime import date, datetime

from flask import current_app
from sqlalchemy import update

from compsense import db
from compsense.calculator.accelerator import (calculate_payout, period_target, build_achievement,
                                              achievement_analytics, parse_tiers)
from compsense.calculator.bands import band_outliers
from compsense.calculator.eligibility import (parse_criteria, evaluate_eligibility, ensure_rsu_eligible,
                                              rsu_eligibility_gap)
from compsense.calculator.equity import (compute_equity_score, gender_pay_gap, compa_ratio_distribution,
                                         compa_heatmap, new_hire_parity)
from compsense.calculator.errors import (ValidationError, IneligibleEmployee, ScenarioStateConflict,
                                         RecordNotFound, PolicyError)
from compsense.calculator.policy import CompensationPolicy
from compsense.calculator.records import (RsuGrantRecord, SCENARIO_DRAFT, SCENARIO_APPLIED,
                                          GRANT_CANCELLED, GRANT_FULLY_VESTED, camelize, jsonable)
from compsense.calculator.scenario import run_scenario, plan_application, compare_scenarios
from compsense.calculator.utils import to_date, to_decimal
from compsense.calculator.validator import parse_scenario_rules, check_accelerator_tiers
from compsense.calculator.vesting import (generate_vesting_schedule, derive_grant_status, summarize_grant,
                                          upcoming_vesting, portfolio_summary)
from compsense.main.utils import (load_policy, invalidate_policy, load_employees, load_bands, load_grants,
                                  load_achievements)
from compsense.models import (Employee, RsuGrant, RsuVestingEvent, CommissionPlan, CommissionAchievement,
                              Scenario, AppSetting)
from compsense.signals import notify, vesting_due, scenario_applied


def _get(model, record_id):
    row = db.session.get(model, record_id)
    if row is None:
        raise RecordNotFound(model.__name__, record_id)
    return row


# --- RSU ---

def create_grant(employee_id, grant_date, total_units, price_at_grant=0, current_price=0,
                 cliff_months=None, vesting_schedule_months=None, as_of=None):
    """
    Creates a grant and stores its full vesting schedule.

    Raises:
        IneligibleEmployee: If the employee's band is below the RSU band.
        InvalidGrant: If the grant terms are malformed.
    """
    policy = load_policy()
    as_of = to_date(as_of or date.today())
    employee = _get(Employee, employee_id)
    ensure_rsu_eligible(employee.to_record(), as_of, policy)

    record = RsuGrantRecord(
        id=str(uuid.uuid4()),
        employee_id=employee.id,
        grant_date=to_date(grant_date),
        total_units=total_units,
        cliff_months=policy.DEFAULT_CLIFF_MONTHS if cliff_months is None else cliff_months,
        vesting_schedule_months=policy.DEFAULT_VESTING_MONTHS if vesting_schedule_months is None else vesting_schedule_months,
        price_at_grant=to_decimal(price_at_grant, 'price_at_grant'),
        current_price=to_decimal(current_price, 'current_price'),
        cliff_percent=policy.CLIFF_PERCENT,
        periodic_percent=policy.PERIODIC_VEST_PERCENT,
        vesting_period_months=policy.VESTING_PERIOD_MONTHS,
    )
    events = generate_vesting_schedule(record, as_of, policy)
    vested = sum(e.units_vesting for e in events if e.is_vested)

    try:
        grant = RsuGrant(
            id=record.id, employee_id=record.employee_id, grant_date=record.grant_date,
            total_units=record.total_units, vested_units=vested, cliff_months=record.cliff_months,
            vesting_schedule_months=record.vesting_schedule_months, cliff_percent=record.cliff_percent,
            periodic_percent=record.periodic_percent, vesting_period_months=record.vesting_period_months,
            price_at_grant=record.price_at_grant,
            current_price=record.current_price, status=derive_grant_status(record, vested),
        )
        db.session.add(grant)
        for event in events:
            db.session.add(RsuVestingEvent(rsu_grant_id=grant.id, vesting_date=event.vesting_date,
                                           units_vesting=event.units_vesting, is_vested=event.is_vested,
                                           vested_at=event.vested_at))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"Created RSU grant {grant.id} for employee {employee.id}: "
                            f"{record.total_units} units, {len(events)} tranches.")
    return grant, events


def grant_schedule(grant_id, as_of):
    grant = _get(RsuGrant, grant_id)
    summary = summarize_grant(grant.to_record(), as_of, load_policy())
    events = summary.pop('events')
    data = camelize(jsonable(summary))
    data['events'] = [e.to_dict() for e in events]
    return data


def refresh_vesting(as_of):
    """
    Recomputes ``is_vested``/``vested_at`` on the stored vesting events and each
    grant's vested_units for ``as_of``. The stored tranches themselves are never
    rewritten: their dates and unit counts were fixed when the grant was made.
    Running it twice for the same date changes nothing the second time.

    Returns:
        dict: Counts of grants processed, tranches newly vested and grants
        that became fully vested.
    """
    policy = load_policy()
    as_of = to_date(as_of)
    grants = RsuGrant.query.filter(RsuGrant.status != GRANT_CANCELLED).order_by(RsuGrant.id).all()
    newly_vested = fully_vested = 0

    try:
        for grant in grants:
            vested = 0
            for row in grant.vesting_events:
                is_vested = row.vesting_date <= as_of
                if is_vested and not row.is_vested:
                    newly_vested += 1
                row.is_vested = is_vested
                row.vested_at = row.vesting_date if is_vested else None
                if is_vested:
                    vested += row.units_vesting

            status = derive_grant_status(grant.to_record(), vested)
            if status == GRANT_FULLY_VESTED and grant.status != GRANT_FULLY_VESTED:
                fully_vested += 1
            grant.vested_units = vested
            grant.status = status
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    lookahead = current_app.config.get('VESTING_LOOKAHEAD_DAYS', 30)
    upcoming = upcoming_vesting([g.to_record() for g in grants], as_of, lookahead, policy)
    app = current_app._get_current_object()
    for item in upcoming:
        notify(vesting_due, app, grant_id=item['grant_id'], employee_id=item['employee_id'],
               vesting_date=item['vesting_date'], units_vesting=item['units_vesting'])

    current_app.logger.info(f"Vesting refresh as of {as_of}: {len(grants)} grants, {newly_vested} tranches "
                            f"newly vested, {fully_vested} grants fully vested, {len(upcoming)} upcoming.")
    return {'grants': len(grants), 'newly_vested': newly_vested, 'fully_vested': fully_vested,
            'upcoming': len(upcoming)}


def upcoming_vesting_report(days, as_of):
    items = upcoming_vesting(load_grants(), as_of, days, load_policy())
    return camelize(jsonable(items))


def rsu_portfolio(as_of):
    return camelize(jsonable(portfolio_summary(load_grants(), as_of, load_policy())))


def rsu_gap_report(as_of):
    gap = rsu_eligibility_gap(load_employees(), load_grants(), as_of, load_policy())
    return camelize(jsonable(gap))


# --- Variable pay ---

def _check_plan_eligibility(plan, employee, as_of, policy):
    predicates = parse_criteria(plan.eligibility_criteria, policy)
    eligible, failed = evaluate_eligibility(predicates, employee.to_record(), as_of, policy)
    if not eligible:
        raise IneligibleEmployee(f"Employee {employee.id} is not eligible for plan '{plan.name}'", details=failed)


def preview_payout(plan_id, achieved_amount, target_amount=None, employee_id=None):
    """
    Computes a payout without storing it. When no target is given, the
    employee's default period target is used.
    """
    policy = load_policy()
    plan = _get(CommissionPlan, plan_id)
    plan_record = plan.to_record()
    if target_amount is None:
        if employee_id is None:
            raise ValidationError('Either a target amount or an employee is required',
                                  details={'fields': ['target_amount', 'employee_id']})
        target_amount = period_target(_get(Employee, employee_id).annual_fixed, plan_record, policy)
    result = calculate_payout(plan_record, achieved_amount, target_amount)
    return {
        'planId': plan.id,
        'targetAmount': float(to_decimal(target_amount, 'target_amount')),
        'achievementPercent': float(result.achievement_percent),
        'appliedTier': result.applied_tier.to_dict() if result.applied_tier else None,
        'multiplier': float(result.multiplier),
        'payoutAmount': float(result.payout_amount),
    }


def calculate_and_save_achievement(employee_id, plan_id, period, achieved_amount, target_amount=None, as_of=None):
    """
    Computes the payout for one employee/plan/period and stores it, replacing
    any earlier achievement for the same period.
    """
    policy = load_policy()
    as_of = to_date(as_of or date.today())
    employee = _get(Employee, employee_id)
    plan = _get(CommissionPlan, plan_id)
    _check_plan_eligibility(plan, employee, as_of, policy)
    plan_record = plan.to_record()
    if target_amount is None:
        target_amount = period_target(employee.annual_fixed, plan_record, policy)
    record = build_achievement(employee.id, plan_record, period, achieved_amount, target_amount)

    try:
        row = CommissionAchievement.query.filter_by(employee_id=employee.id, plan_id=plan.id, period=period).first()
        if row is None:
            row = CommissionAchievement(employee_id=employee.id, plan_id=plan.id, period=period)
            db.session.add(row)
        row.target_amount = record.target_amount
        row.achieved_amount = record.achieved_amount
        row.achievement_percent = record.achievement_percent
        row.payout_amount = record.payout_amount
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"Achievement saved for employee {employee.id}, plan {plan.id}, {period}: "
                            f"{record.achievement_percent}% -> payout {record.payout_amount}")
    return record


def create_plan(name, target_variable_percent, accelerator_tiers, plan_type='SALES', eligibility_criteria=None):
    tiers = parse_tiers(accelerator_tiers)
    check_accelerator_tiers(tiers)
    parse_criteria(eligibility_criteria, load_policy())
    plan = CommissionPlan(name=name, plan_type=plan_type,
                          target_variable_percent=to_decimal(target_variable_percent, 'target_variable_percent'),
                          accelerator_tiers=[t.to_dict() for t in tiers],
                          eligibility_criteria=eligibility_criteria)
    try:
        db.session.add(plan)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return plan


def variable_pay_analytics(period=None):
    band_by_employee = {e.id: e.band for e in load_employees()}
    return camelize(jsonable(achievement_analytics(load_achievements(period), band_by_employee)))


# --- Pay equity ---

def equity_report(as_of):
    policy = load_policy()
    employees, bands = load_employees(), load_bands()
    score = compute_equity_score(employees, bands, as_of, policy)
    data = score.to_dict()
    data['asOf'] = to_date(as_of).isoformat()
    data['analytics'] = camelize(jsonable({
        'gender_gap': gender_pay_gap(employees, policy),
        'compa_distribution': compa_ratio_distribution(employees, bands, as_of),
        'heatmap': compa_heatmap(employees, bands, as_of),
        'new_hire_parity': new_hire_parity(employees, as_of),
    }))
    return data


def outlier_report(as_of):
    return camelize(jsonable(band_outliers(load_employees(), load_bands(), as_of)))


# --- Scenarios ---

# One lock per scenario id; a second apply of the same scenario is turned
# away while the first is still running.
_apply_locks = {}
_apply_locks_guard = threading.Lock()


def _scenario_lock(scenario_id):
    with _apply_locks_guard:
        return _apply_locks.setdefault(scenario_id, threading.Lock())


def _release_scenario_lock(scenario_id):
    """Forgets the lock of a scenario that can no longer be applied."""
    with _apply_locks_guard:
        _apply_locks.pop(scenario_id, None)


def create_scenario(name, rules, description=''):
    parse_scenario_rules(rules)
    scenario = Scenario(name=name, description=description or '', rules=rules, status=SCENARIO_DRAFT)
    try:
        db.session.add(scenario)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"Created scenario {scenario.id} '{name}' with {len(rules)} rules.")
    return scenario


def run_scenario_by_id(scenario_id, as_of):
    scenario = _get(Scenario, scenario_id)
    return run_scenario(scenario.to_record(), load_employees(), load_bands(), as_of, load_policy())


def compare_scenarios_by_id(scenario_ids, as_of):
    scenarios = [_get(Scenario, scenario_id).to_record() for scenario_id in scenario_ids]
    return compare_scenarios(scenarios, load_employees(), load_bands(), as_of, load_policy())


def _write_employee_update(employee_update):
    employee = _get(Employee, employee_update.employee_id)
    employee.annual_fixed = employee_update.annual_fixed
    employee.compa_ratio = employee_update.compa_ratio


def apply_scenario(scenario_id, token, as_of=None):
    """
    Commits a draft scenario: every affected employee gets the projected
    fixed pay and the scenario becomes APPLIED, all in one transaction.
    Either everything is written or nothing is, and a scenario can only be
    applied once.

    Raises:
        ValidationError: If the confirmation token does not match.
        ScenarioStateConflict: If the scenario is not a draft any more, or an
            apply of the same scenario is already in progress.
    """
    if token != current_app.config['SCENARIO_APPLY_TOKEN']:
        raise ValidationError('Applying a scenario needs the confirmation token',
                              details={'expected': 'confirmation token'}, code='CONFIRMATION_REQUIRED')
    as_of = to_date(as_of or date.today())

    lock = _scenario_lock(scenario_id)
    if not lock.acquire(blocking=False):
        raise ScenarioStateConflict(f"Scenario '{scenario_id}' is already being applied",
                                    details={'scenario_id': scenario_id})
    settled = True
    try:
        scenario = _get(Scenario, scenario_id)
        if scenario.status != SCENARIO_DRAFT:
            raise ScenarioStateConflict(f"Scenario '{scenario_id}' is {scenario.status}, only drafts can be applied",
                                        details={'scenario_id': scenario_id, 'status': scenario.status})
        settled = False
        result, updates = plan_application(scenario.to_record(), load_employees(), load_bands(), as_of,
                                           load_policy())
        try:
            # Only one writer can move the row out of DRAFT, even across processes.
            claimed = db.session.execute(
                update(Scenario)
                .where(Scenario.id == scenario_id, Scenario.status == SCENARIO_DRAFT)
                .values(status=SCENARIO_APPLIED, applied_at=datetime.utcnow(),
                        total_cost_impact=result.delta, affected_employee_count=result.affected_count)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                raise ScenarioStateConflict(f"Scenario '{scenario_id}' was applied concurrently",
                                            details={'scenario_id': scenario_id})
            for employee_update in updates:
                _write_employee_update(employee_update)
            db.session.commit()
            settled = True
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"Applying scenario {scenario_id} failed; nothing was written.", exc_info=True)
            raise
    finally:
        if settled:
            _release_scenario_lock(scenario_id)
        lock.release()

    current_app.logger.info(f"Scenario {scenario_id} applied: {len(updates)} employees updated, "
                            f"cost delta {result.delta:,.2f}")
    notify(scenario_applied, current_app._get_current_object(), scenario_id=scenario_id,
           affected_count=result.affected_count, delta=result.delta)
    return {'scenarioId': scenario_id, 'status': SCENARIO_APPLIED, 'updatedCount': len(updates),
            'result': result.to_dict()}


# --- Settings ---

def _coerce_setting(setting, raw_value):
    """Validates a new raw value against the setting's type; returns the string to store."""
    try:
        if setting.value_type == 'json':
            return json.dumps(json.loads(raw_value) if isinstance(raw_value, str) else raw_value)
        if setting.value_type == 'int':
            return str(int(raw_value))
        if setting.value_type == 'float':
            return str(float(raw_value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid value for setting '{setting.key}' ({setting.value_type}): {e}",
                              details={'key': setting.key, 'value_type': setting.value_type})
    return str(raw_value)


def update_setting(key, raw_value):
    """
    Stores a new value for a policy setting. The whole policy is rebuilt with
    the new value first, so a change that would make it invalid is refused.
    """
    setting = AppSetting.query.filter_by(key=key).first()
    if setting is None:
        raise RecordNotFound('AppSetting', key)
    new_value = _coerce_setting(setting, raw_value)
    previous = setting.value
    try:
        setting.value = new_value
        settings = {s.key: s.get_value() for s in AppSetting.query.all()}
        CompensationPolicy.from_settings(settings)
        db.session.commit()
    except PolicyError:
        db.session.rollback()
        current_app.logger.warning(f"Rejected setting {key}={new_value!r}; kept {previous!r}.")
        raise
    except Exception:
        db.session.rollback()
        raise
    invalidate_policy()
    current_app.logger.info(f"Setting {key} changed from {previous!r} to {new_value!r}; policy cache cleared.")
    return setting
