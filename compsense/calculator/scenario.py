# ==============================================================================
# compsense/calculator/scenario.py
# ------------------------------------------------------------------------------
# Scenario simulation engine. Projects the fixed pay of every employee a
# scenario's rules select and prices the change, without writing anything.
# ==============================================================================

import logging
from collections import namedtuple
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from functools import reduce
from typing import Optional

from .bands import compa_ratio_for, effective_band_map
from .errors import NoEffectiveBand, ScenarioStateConflict
from .policy import DEFAULT_POLICY
from .records import SCENARIO_APPLIED, camelize, jsonable
from .schema import RAISE_PERCENT, RAISE_FLAT, SET_TO_BENCHMARK, SET_COMPA_RATIO, BAND_ANCHORED_ACTIONS
from .utils import months_between, round2, to_date
from .validator import parse_scenario_rules

EmployeeUpdate = namedtuple('EmployeeUpdate', ['employee_id', 'annual_fixed', 'compa_ratio'])


@dataclass
class ProjectedChange:
    employee_id: str
    name: str
    band: str
    department: str
    current_fixed: Decimal
    projected_fixed: Decimal
    rule_index: int

    @property
    def delta(self):
        return self.projected_fixed - self.current_fixed

    def to_dict(self):
        data = asdict(self)
        data['delta'] = self.delta
        data['delta_percent'] = float(self.delta / self.current_fixed * 100) if self.current_fixed else None
        return camelize(jsonable(data))


@dataclass
class ScenarioRunResult:
    scenario_id: str
    affected_count: int
    current_cost: Decimal
    projected_cost: Decimal
    delta: Decimal
    delta_percent: Optional[float]
    by_band: list = field(default_factory=list)
    top_changes: list = field(default_factory=list)
    changes: list = field(default_factory=list)
    total_employees: int = 0

    def projected_pay(self):
        """{employee_id: projected fixed pay} for every affected employee."""
        return {c.employee_id: c.projected_fixed for c in self.changes}

    def to_dict(self, include_changes=False):
        data = {
            'scenario_id': self.scenario_id,
            'affected_count': self.affected_count,
            'total_employees': self.total_employees,
            'current_cost': self.current_cost,
            'projected_cost': self.projected_cost,
            'delta': self.delta,
            'delta_percent': self.delta_percent,
            'by_band': self.by_band,
        }
        data = camelize(jsonable(data))
        data['topChanges'] = [c.to_dict() for c in self.top_changes]
        if include_changes:
            data['changes'] = [c.to_dict() for c in self.changes]
        return data


def matches_filter(employee, rule_filter, compa_ratio, as_of):
    """All predicates present in the filter must hold (logical AND)."""
    if rule_filter.bands is not None and employee.band not in rule_filter.bands:
        return False
    if rule_filter.departments is not None and employee.department not in rule_filter.departments:
        return False
    if rule_filter.gender is not None and employee.gender != rule_filter.gender:
        return False
    if rule_filter.needs_compa_ratio:
        if compa_ratio is None:
            return False
        if rule_filter.compa_min is not None and compa_ratio < rule_filter.compa_min:
            return False
        if rule_filter.compa_max is not None and compa_ratio > rule_filter.compa_max:
            return False
    if rule_filter.rating_min is not None:
        if employee.performance_rating is None or employee.performance_rating < rule_filter.rating_min:
            return False
    if rule_filter.tenure_min_months is not None:
        if months_between(employee.date_of_joining, as_of) < rule_filter.tenure_min_months:
            return False
    return True


def project_salary(employee, action, band, as_of):
    """
    Projected fixed pay after one action, always computed from the
    employee's current pay.

    Raises:
        NoEffectiveBand: For band-anchored actions when the employee's band has no effective row.
    """
    current = employee.annual_fixed
    if action.type in BAND_ANCHORED_ACTIONS and band is None:
        raise NoEffectiveBand(employee.band, as_of)
    if action.type == RAISE_PERCENT:
        projected = current * (1 + action.value / 100)
    elif action.type == RAISE_FLAT:
        projected = current + action.value
    elif action.type == SET_TO_BENCHMARK:
        projected = band.mid_salary
    elif action.type == SET_COMPA_RATIO:
        projected = band.mid_salary * action.value / 100
    else:
        raise ValueError(f"Unsupported action type {action.type!r}")
    return round2(projected)


def _final_projection(employee, rules, band, compa_ratio, as_of):
    """
    Folds the rule list over one employee to find the last matching rule,
    then projects that rule's action from the original pay. Overridden rules
    are never projected, so they cannot fail the run.

    Returns:
        tuple: (projected pay, index of the winning rule), or (None, None) if no rule matched.
    """
    def step(winner, indexed_rule):
        index, rule = indexed_rule
        if not matches_filter(employee, rule.filter, compa_ratio, as_of):
            return winner
        logging.debug(f"Employee {employee.id} matched rule {index + 1} ({rule.action.type}).")
        return index

    winner = reduce(step, enumerate(rules), None)
    if winner is None:
        return None, None
    return project_salary(employee, rules[winner].action, band, as_of), winner


def run_scenario(scenario, employees, bands, as_of, policy=None):
    """
    Simulates a scenario against a population snapshot.

    Args:
        scenario (ScenarioRecord): Scenario with raw rule dicts, must be a DRAFT.
        employees (list[EmployeeRecord]): Population snapshot; never modified.
        bands (list[SalaryBandRecord]): Salary band rows.
        as_of (date): Date used for effective bands and tenure.
        policy (CompensationPolicy): Provides SCENARIO_TOP_N.

    Returns:
        ScenarioRunResult: Totals over every affected employee; ``top_changes``
        is only the largest SCENARIO_TOP_N changes for reporting.

    Raises:
        ScenarioStateConflict: If the scenario has already been applied.
        InvalidRule: If the rules do not match the schema.
        NoEffectiveBand: If a band-anchored action hits an employee without an effective band.
    """
    policy = policy or DEFAULT_POLICY
    as_of = to_date(as_of)
    if scenario.status == SCENARIO_APPLIED:
        raise ScenarioStateConflict(
            f"Scenario '{scenario.id}' is already applied and can no longer be run",
            details={'scenario_id': scenario.id, 'status': scenario.status},
        )
    rules = parse_scenario_rules(scenario.rules)
    band_map = effective_band_map(bands, as_of)

    changes = []
    for emp in employees:
        band = band_map.get(emp.band)
        compa_ratio = compa_ratio_for(emp.annual_fixed, band) if band is not None else None
        projected, rule_index = _final_projection(emp, rules, band, compa_ratio, as_of)
        if projected is None or projected == emp.annual_fixed:
            continue
        changes.append(ProjectedChange(
            employee_id=emp.id, name=emp.name, band=emp.band, department=emp.department,
            current_fixed=emp.annual_fixed, projected_fixed=projected, rule_index=rule_index,
        ))

    current_cost = sum((c.current_fixed for c in changes), Decimal('0'))
    projected_cost = sum((c.projected_fixed for c in changes), Decimal('0'))
    delta = projected_cost - current_cost
    delta_percent = float(delta / current_cost * 100) if current_cost else None

    by_band = {}
    for change in changes:
        entry = by_band.setdefault(change.band, {'band': change.band, 'count': 0, 'current': Decimal('0'),
                                                 'projected': Decimal('0'), 'delta': Decimal('0')})
        entry['count'] += 1
        entry['current'] += change.current_fixed
        entry['projected'] += change.projected_fixed
        entry['delta'] += change.delta

    top_changes = sorted(changes, key=lambda c: (-abs(c.delta), c.employee_id))[:policy.SCENARIO_TOP_N]

    logging.info(
        f"Scenario {scenario.id} run: {len(changes)} of {len(employees)} employees affected, "
        f"cost {current_cost:,.2f} -> {projected_cost:,.2f} (delta {delta:,.2f})"
    )
    return ScenarioRunResult(
        scenario_id=scenario.id,
        affected_count=len(changes),
        current_cost=current_cost,
        projected_cost=projected_cost,
        delta=delta,
        delta_percent=delta_percent,
        by_band=[by_band[band] for band in sorted(by_band)],
        top_changes=top_changes,
        changes=changes,
        total_employees=len(employees),
    )


def plan_application(scenario, employees, bands, as_of, policy=None):
    """
    Re-runs the projection and works out what ``apply`` has to write: the new
    fixed pay of each affected employee and the compa-ratio it implies.

    Returns:
        tuple: (ScenarioRunResult, list[EmployeeUpdate])
    """
    as_of = to_date(as_of)
    result = run_scenario(scenario, employees, bands, as_of, policy)
    band_map = effective_band_map(bands, as_of)
    updates = []
    for change in result.changes:
        band = band_map.get(change.band)
        compa_ratio = compa_ratio_for(change.projected_fixed, band) if band is not None else None
        updates.append(EmployeeUpdate(change.employee_id, change.projected_fixed, compa_ratio))
    return result, updates


def compare_scenarios(scenarios, employees, bands, as_of, policy=None):
    """Runs several draft scenarios against the same snapshot, in the given order."""
    return [run_scenario(s, employees, bands, as_of, policy) for s in scenarios]
