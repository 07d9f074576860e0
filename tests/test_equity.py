# tests/test_equity.py

from datetime import date

import pytest

from compsense.calculator.equity import (compute_equity_score, gender_pay_gap, compa_ratio_distribution,
                                         compa_heatmap, new_hire_parity)
from compsense.calculator.errors import PolicyError
from compsense.calculator.policy import CompensationPolicy, DEFAULT_POLICY

AS_OF = date(2025, 6, 30)


def test_empty_population_has_no_score():
    result = compute_equity_score([], [], AS_OF)
    assert result.score is None
    assert result.to_dict()['score'] is None


def test_composite_score_weights_three_components(make_employee, make_band):
    employees = [
        make_employee(id='E1', gender='MALE', annual_fixed=2000000),
        make_employee(id='E2', gender='FEMALE', annual_fixed=1900000),
    ]
    result = compute_equity_score(employees, [make_band()], AS_OF)

    assert result.gap_percent == 5.0
    assert result.components.gender_score == 75.0
    assert result.components.compa_score == 100.0
    assert result.components.outlier_score == 100.0
    assert result.score == 90.0


def test_one_sided_gender_split_drops_gender_component(make_employee, make_band):
    employees = [
        make_employee(id='E1', annual_fixed=1900000),
        make_employee(id='E2', annual_fixed=1300000),
    ]
    result = compute_equity_score(employees, [make_band()], AS_OF)

    assert result.gap_percent is None
    assert result.components.gender_score is None
    assert result.components.compa_score == 50.0
    assert result.components.outlier_score == 0.0
    # (50 × 35 + 0 × 25) / 60
    assert result.score == 29.2


def test_unpaid_groups_make_gender_gap_not_applicable(make_employee, make_band):
    employees = [
        make_employee(id='E1', gender='MALE', annual_fixed=0),
        make_employee(id='E2', gender='FEMALE', annual_fixed=0),
    ]
    result = compute_equity_score(employees, [make_band()], AS_OF)

    assert result.gap_percent is None
    assert result.components.gender_score is None
    assert result.score == 0.0
    assert gender_pay_gap(employees)['overall']['gap_percent'] is None


def test_employees_without_band_are_reported_and_left_out_of_compa(make_employee, make_band):
    employees = [
        make_employee(id='E1', gender='MALE', annual_fixed=2000000),
        make_employee(id='E2', gender='FEMALE', annual_fixed=1900000),
        make_employee(id='E3', gender='FEMALE', annual_fixed=1900000, band='X9'),
    ]
    result = compute_equity_score(employees, [make_band()], AS_OF)

    assert result.scored_employees == 2
    assert result.total_employees == 3
    assert result.excluded == [{'employee_id': 'E3', 'band': 'X9', 'reason': 'NO_EFFECTIVE_BAND'}]
    assert result.score == 90.0


def test_compa_range_and_band_range_are_reported_separately(make_employee, make_band):
    # 2,350,000 is inside the band max but at a compa-ratio of 124
    employees = [make_employee(id='E1', annual_fixed=2350000), make_employee(id='E2', annual_fixed=1900000)]
    result = compute_equity_score(employees, [make_band()], AS_OF)

    assert result.compa_in_range_count == 1
    assert result.band_in_range_count == 2
    assert result.outlier_count == 0


def test_gender_sensitivity_clamps_at_zero(make_employee, make_band):
    employees = [
        make_employee(id='E1', gender='MALE', annual_fixed=2400000),
        make_employee(id='E2', gender='FEMALE', annual_fixed=1400000),
    ]
    result = compute_equity_score(employees, [make_band()], AS_OF)
    assert result.components.gender_score == 0.0


def test_alternative_weights_are_injected_through_policy(make_employee, make_band):
    policy = DEFAULT_POLICY.replace(EQUITY_WEIGHTS={'gender': 0, 'compa': 100, 'outlier': 0})
    employees = [make_employee(id='E1', annual_fixed=1900000), make_employee(id='E2', annual_fixed=1300000)]
    assert compute_equity_score(employees, [make_band()], AS_OF, policy).score == 50.0


def test_weights_not_summing_to_100_are_rejected():
    with pytest.raises(PolicyError):
        CompensationPolicy.from_settings({'EQUITY_WEIGHTS': {'gender': 50, 'compa': 35, 'outlier': 25}})


def test_gender_pay_gap_by_department(make_employee):
    employees = [
        make_employee(id='E1', gender='MALE', annual_fixed=2000000, department='Engineering'),
        make_employee(id='E2', gender='FEMALE', annual_fixed=1500000, department='Engineering'),
        make_employee(id='E3', gender='MALE', annual_fixed=1000000, department='Sales'),
    ]
    gap = gender_pay_gap(employees)

    engineering = gap['by_department'][0]
    assert engineering['department'] == 'Engineering'
    assert engineering['gap_percent'] == 25.0
    assert engineering['higher_paid_group'] == 'MALE'
    sales = gap['by_department'][1]
    assert sales['gap_percent'] is None
    assert gap['overall']['count'] == {'MALE': 2, 'FEMALE': 1}


def test_compa_distribution_and_heatmap(make_employee, make_band):
    employees = [
        make_employee(id='E1', annual_fixed=1900000),
        make_employee(id='E2', annual_fixed=1300000),
        make_employee(id='E3', annual_fixed=2000000, department='Sales'),
    ]
    bins = {b['label']: b['count'] for b in compa_ratio_distribution(employees, [make_band()], AS_OF)}
    assert bins['<70%'] == 1
    assert bins['100-110%'] == 2

    heatmap = compa_heatmap(employees, [make_band()], AS_OF)
    assert heatmap == [
        {'department': 'Engineering', 'band': 'P3', 'avg_compa_ratio': 84.0, 'count': 2},
        {'department': 'Sales', 'band': 'P3', 'avg_compa_ratio': 105.0, 'count': 1},
    ]


def test_new_hire_parity_flags_cells_outside_tolerance(make_employee):
    employees = [
        make_employee(id='E1', annual_fixed=1900000, date_of_joining=date(2020, 1, 1)),
        make_employee(id='E2', annual_fixed=2200000, date_of_joining=date(2025, 3, 1)),
        make_employee(id='E3', annual_fixed=2000000, department='Sales', date_of_joining=date(2019, 1, 1)),
        make_employee(id='E4', annual_fixed=1950000, department='Sales', date_of_joining=date(2025, 4, 1)),
    ]
    parity = new_hire_parity(employees, AS_OF)

    assert len(parity) == 1
    assert parity[0]['department'] == 'Engineering'
    assert parity[0]['issue'] == 'NEW_HIRE_PREMIUM'
    assert parity[0]['parity_percent'] == 115.79
