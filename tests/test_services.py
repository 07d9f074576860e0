# tests/test_services.py

import threading
from datetime import date
from decimal import Decimal

import pytest

from compsense.calculator.errors import (IneligibleEmployee, ScenarioStateConflict, ValidationError, PolicyError,
                                         RecordNotFound, InvalidRule)
from compsense.calculator.records import SCENARIO_APPLIED, SCENARIO_DRAFT
from compsense.calculator.vesting import vested_units
from compsense.main import services
from compsense.signals import scenario_applied, vesting_due

AS_OF = date(2025, 6, 30)
TOKEN = 'CONFIRM_APPLY'
RULES = [
    {'filter': {'band': 'P2'}, 'action': {'type': 'RAISE_PERCENT', 'value': 10}},
    {'filter': {'department': 'Engineering'}, 'action': {'type': 'RAISE_FLAT', 'value': 50000}},
]


def _pay(employee_id):
    from compsense import db
    from compsense.models import Employee
    return db.session.get(Employee, employee_id).annual_fixed


def _status(scenario_id):
    from compsense import db
    from compsense.models import Scenario
    return db.session.get(Scenario, scenario_id).status


@pytest.fixture
def scenario_id(seeded_db):
    return services.create_scenario('Mid-year correction', RULES).id


# --- RSU ---

def test_create_grant_persists_the_generated_schedule(seeded_db):
    grant, events = services.create_grant('emp-1', date(2024, 1, 15), 1600, price_at_grant=10,
                                          current_price=25, as_of=AS_OF)

    stored = grant.vesting_events.all()
    assert [(e.vesting_date, e.units_vesting) for e in stored] == [(e.vesting_date, e.units_vesting) for e in events]
    assert sum(e.units_vesting for e in stored) == 1600
    assert grant.cliff_months == 12
    assert grant.vesting_schedule_months == 48
    assert grant.vested_units == 500 == vested_units(grant.to_record(), AS_OF)


def test_create_grant_rejects_employees_below_rsu_band(seeded_db):
    from compsense import db
    from compsense.models import Employee, RsuGrant
    db.session.add(Employee(id='emp-9', first_name='Dee', band='P1', department='Support', gender='FEMALE',
                            date_of_joining=date(2020, 1, 1), annual_fixed=Decimal('900000')))
    db.session.commit()

    with pytest.raises(IneligibleEmployee):
        services.create_grant('emp-9', date(2024, 1, 15), 1000, as_of=AS_OF)
    assert RsuGrant.query.count() == 0


def test_create_grant_for_unknown_employee(seeded_db):
    with pytest.raises(RecordNotFound):
        services.create_grant('nobody', date(2024, 1, 15), 1000, as_of=AS_OF)


def test_refresh_vesting_tracks_the_generator_and_is_idempotent(seeded_db):
    grant, _ = services.create_grant('emp-1', date(2024, 1, 15), 1600, as_of=AS_OF)
    grant_id = grant.id

    first = services.refresh_vesting(date(2025, 8, 1))
    second = services.refresh_vesting(date(2025, 8, 1))

    from compsense import db
    from compsense.models import RsuGrant
    grant = db.session.get(RsuGrant, grant_id)
    assert first['newly_vested'] == 1
    assert second['newly_vested'] == 0
    assert grant.vested_units == 600 == vested_units(grant.to_record(), date(2025, 8, 1))
    assert grant.vesting_events.count() == 13
    assert grant.vesting_events.filter_by(is_vested=True).count() == 3


def test_vesting_setting_changes_leave_existing_schedules_alone(seeded_db, client):
    grant, events = services.create_grant('emp-1', date(2024, 1, 15), 1600, as_of=AS_OF)
    grant_id = grant.id
    services.update_setting('CLIFF_PERCENT', '50')
    services.update_setting('VESTING_PERIOD_MONTHS', '6')

    services.refresh_vesting(AS_OF)

    from compsense import db
    from compsense.models import RsuGrant
    grant = db.session.get(RsuGrant, grant_id)
    stored = [(e.vesting_date, e.units_vesting) for e in grant.vesting_events]
    assert stored == [(e.vesting_date, e.units_vesting) for e in events]
    assert stored[0] == (date(2025, 1, 15), 400)
    assert grant.vested_units == 500

    schedule = client.get(f'/api/rsu/grants/{grant_id}/schedule?as_of=2025-06-30').get_json()
    assert schedule['vestedUnits'] == 500
    assert len(schedule['events']) == 13

    # grants made after the edit follow the new terms
    newer, newer_events = services.create_grant('emp-2', date(2024, 1, 15), 1600, as_of=AS_OF)
    assert newer_events[0].units_vesting == 800
    assert newer.cliff_percent == Decimal('50')


def test_refresh_marks_grant_fully_vested(seeded_db):
    grant, _ = services.create_grant('emp-1', date(2020, 1, 15), 1600, as_of=date(2020, 1, 15))
    summary = services.refresh_vesting(date(2025, 1, 1))
    assert summary['fully_vested'] == 1
    assert grant.status == 'FULLY_VESTED'
    assert grant.vested_units == 1600


def test_refresh_signals_tranches_inside_lookahead(seeded_db):
    services.create_grant('emp-1', date(2024, 1, 15), 1600, as_of=AS_OF)
    received = []

    def receiver(sender, **payload):
        received.append(payload)

    vesting_due.connect(receiver, sender=seeded_db)
    try:
        services.refresh_vesting(AS_OF)
    finally:
        vesting_due.disconnect(receiver, sender=seeded_db)

    assert len(received) == 1
    assert received[0]['vesting_date'] == date(2025, 7, 15)
    assert received[0]['units_vesting'] == 100


# --- Variable pay ---

@pytest.fixture
def plan_id(seeded_db):
    plan = services.create_plan('Sales 2025', 20, [{'threshold': 80, 'multiplier': 0.8},
                                                   {'threshold': 100, 'multiplier': 1.0},
                                                   {'threshold': 120, 'multiplier': 1.3}])
    return plan.id


def test_achievement_uses_default_quarterly_target(plan_id):
    record = services.calculate_and_save_achievement('emp-2', plan_id, '2025-Q2', 114000, as_of=AS_OF)
    assert record.target_amount == Decimal('95000.00')
    assert record.achievement_percent == Decimal('120.00')
    assert record.payout_amount == Decimal('123500.00')


def test_saving_the_same_period_again_replaces_the_achievement(plan_id):
    from compsense.models import CommissionAchievement
    services.calculate_and_save_achievement('emp-2', plan_id, '2025-Q2', 114000, as_of=AS_OF)
    services.calculate_and_save_achievement('emp-2', plan_id, '2025-Q2', 76000, as_of=AS_OF)

    rows = CommissionAchievement.query.all()
    assert len(rows) == 1
    assert rows[0].payout_amount == Decimal('76000.00')


def test_plan_eligibility_criteria_are_enforced(seeded_db):
    plan = services.create_plan('Senior plan', 10, [{'threshold': 100, 'multiplier': 1.0}],
                                eligibility_criteria={'minBand': 'P3'})
    with pytest.raises(IneligibleEmployee):
        services.calculate_and_save_achievement('emp-1', plan.id, '2025-Q2', 1000, target_amount=1000, as_of=AS_OF)


def test_preview_payout_needs_a_target_or_an_employee(plan_id):
    with pytest.raises(ValidationError):
        services.preview_payout(plan_id, 1000)
    assert services.preview_payout(plan_id, 95, target_amount=100)['multiplier'] == 0.8


# --- Scenarios ---

def test_create_scenario_validates_rules(seeded_db):
    with pytest.raises(InvalidRule):
        services.create_scenario('Broken', [{'filter': {}, 'action': {'type': 'NOPE'}}])


def test_run_never_writes(scenario_id):
    result = services.run_scenario_by_id(scenario_id, AS_OF)
    assert result.affected_count == 2
    assert result.delta == Decimal('170000.00')
    assert _pay('emp-1') == Decimal('2000000')
    assert _status(scenario_id) == SCENARIO_DRAFT


def test_apply_writes_projections_and_compa_ratios(scenario_id):
    from compsense import db
    from compsense.models import Employee, Scenario
    outcome = services.apply_scenario(scenario_id, TOKEN, AS_OF)

    assert outcome['updatedCount'] == 2
    assert db.session.get(Employee, 'emp-1').annual_fixed == Decimal('2050000')
    assert db.session.get(Employee, 'emp-1').compa_ratio == 141
    assert db.session.get(Employee, 'emp-3').annual_fixed == Decimal('1320000')
    assert db.session.get(Employee, 'emp-3').compa_ratio == 91
    assert db.session.get(Employee, 'emp-2').annual_fixed == Decimal('1900000')
    scenario = db.session.get(Scenario, scenario_id)
    assert scenario.status == SCENARIO_APPLIED
    assert scenario.applied_at is not None
    assert scenario.total_cost_impact == Decimal('170000')
    assert scenario.affected_employee_count == 2


def test_apply_twice_is_rejected(scenario_id):
    services.apply_scenario(scenario_id, TOKEN, AS_OF)
    with pytest.raises(ScenarioStateConflict):
        services.apply_scenario(scenario_id, TOKEN, AS_OF)
    assert _pay('emp-1') == Decimal('2050000')


def test_apply_locks_are_dropped_once_the_scenario_is_settled(scenario_id, monkeypatch):
    services.apply_scenario(scenario_id, TOKEN, AS_OF)
    assert scenario_id not in services._apply_locks

    with pytest.raises(RecordNotFound):
        services.apply_scenario('missing', TOKEN, AS_OF)
    assert 'missing' not in services._apply_locks

    draft_id = services.create_scenario('Retry later', RULES).id

    def failing_writer(employee_update):
        raise RuntimeError('database went away')

    monkeypatch.setattr(services, '_write_employee_update', failing_writer)
    with pytest.raises(RuntimeError):
        services.apply_scenario(draft_id, TOKEN, AS_OF)
    # still a draft, so its lock stays registered for the next attempt
    assert draft_id in services._apply_locks
    assert not services._apply_locks[draft_id].locked()


def test_apply_needs_the_confirmation_token(scenario_id):
    with pytest.raises(ValidationError) as excinfo:
        services.apply_scenario(scenario_id, 'yes please', AS_OF)
    assert excinfo.value.code == 'CONFIRMATION_REQUIRED'
    assert _status(scenario_id) == SCENARIO_DRAFT


def test_failed_apply_leaves_scenario_draft_and_no_partial_updates(scenario_id, monkeypatch):
    original = services._write_employee_update
    written = []

    def failing_writer(update):
        written.append(update.employee_id)
        if len(written) == 2:
            raise RuntimeError('database went away')
        original(update)

    monkeypatch.setattr(services, '_write_employee_update', failing_writer)
    with pytest.raises(RuntimeError):
        services.apply_scenario(scenario_id, TOKEN, AS_OF)

    assert written == ['emp-1', 'emp-3']
    assert _status(scenario_id) == SCENARIO_DRAFT
    assert _pay('emp-1') == Decimal('2000000')
    assert _pay('emp-3') == Decimal('1200000')

    # the lock was released and the draft can still be applied
    monkeypatch.setattr(services, '_write_employee_update', original)
    assert services.apply_scenario(scenario_id, TOKEN, AS_OF)['updatedCount'] == 2


def test_concurrent_apply_rejects_second_caller_while_first_is_running(scenario_id, seeded_db, monkeypatch):
    original = services._write_employee_update
    contender = []

    def apply_from_another_thread():
        with seeded_db.app_context():
            try:
                services.apply_scenario(scenario_id, TOKEN, AS_OF)
                contender.append('applied')
            except ScenarioStateConflict as e:
                contender.append(e.code)

    def writer_with_contender(update):
        if not contender:
            thread = threading.Thread(target=apply_from_another_thread)
            thread.start()
            thread.join()
        original(update)

    monkeypatch.setattr(services, '_write_employee_update', writer_with_contender)
    outcome = services.apply_scenario(scenario_id, TOKEN, AS_OF)

    assert contender == ['SCENARIO_STATE_CONFLICT']
    assert outcome['updatedCount'] == 2
    assert _status(scenario_id) == SCENARIO_APPLIED
    assert _pay('emp-1') == Decimal('2050000')
    assert _pay('emp-3') == Decimal('1320000')


def test_applied_signal_is_sent_and_failing_receivers_do_not_block(scenario_id, seeded_db):
    received = []

    def receiver(sender, **payload):
        received.append(payload)

    def broken_receiver(sender, **payload):
        raise RuntimeError('mail server down')

    scenario_applied.connect(broken_receiver, sender=seeded_db)
    scenario_applied.connect(receiver, sender=seeded_db)
    try:
        services.apply_scenario(scenario_id, TOKEN, AS_OF)
    finally:
        scenario_applied.disconnect(broken_receiver, sender=seeded_db)
        scenario_applied.disconnect(receiver, sender=seeded_db)

    assert received == [{'scenario_id': scenario_id, 'affected_count': 2, 'delta': Decimal('170000.00')}]
    assert _status(scenario_id) == SCENARIO_APPLIED


def test_compare_scenarios(scenario_id):
    other = services.create_scenario('Engineering only', RULES[1:]).id
    results = services.compare_scenarios_by_id([scenario_id, other], AS_OF)
    assert [r.delta for r in results] == [Decimal('170000.00'), Decimal('50000.00')]


# --- Pay equity ---

def test_equity_report_scores_the_population(seeded_db):
    report = services.equity_report(AS_OF)

    assert report['score'] == 31.7
    assert report['components'] == {'genderScore': 0.0, 'compaScore': 66.7, 'outlierScore': 33.3}
    assert report['outlierCount'] == 1
    assert report['analytics']['genderGap']['overall']['gapPercent'] == 22.5


def test_equity_report_without_employees(app_with_db):
    assert services.equity_report(AS_OF)['score'] is None


# --- Settings ---

def test_setting_change_reloads_policy(seeded_db):
    from compsense.main.utils import load_policy
    assert load_policy().SCENARIO_TOP_N == 10
    services.update_setting('SCENARIO_TOP_N', '3')
    assert load_policy().SCENARIO_TOP_N == 3


def test_setting_that_breaks_the_policy_is_refused(seeded_db):
    from compsense.models import AppSetting
    with pytest.raises(PolicyError):
        services.update_setting('EQUITY_WEIGHTS', '{"gender": 50, "compa": 35, "outlier": 25}')
    assert AppSetting.query.filter_by(key='EQUITY_WEIGHTS').first().get_value()['gender'] == 40


def test_setting_with_wrong_type_is_refused(seeded_db):
    with pytest.raises(ValidationError):
        services.update_setting('SCENARIO_TOP_N', 'ten')
