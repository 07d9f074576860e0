# tests/test_eligibility.py

from datetime import date
from decimal import Decimal

import pytest

from compsense.calculator.eligibility import (parse_criteria, evaluate_eligibility, ensure_rsu_eligible,
                                              rsu_eligibility_gap, Predicate, MIN_BAND_LEVEL, MIN_TENURE_MONTHS)
from compsense.calculator.errors import IneligibleEmployee, ValidationError
from compsense.calculator.records import GRANT_CANCELLED

AS_OF = date(2025, 6, 30)


def test_legacy_keys_parse_into_tagged_predicates():
    predicates = parse_criteria({'minBand': 'P2', 'minTenure': '12', 'minRating': 3.5, 'genders': 'FEMALE'})
    assert predicates == (
        Predicate(MIN_BAND_LEVEL, 'P2'),
        Predicate(MIN_TENURE_MONTHS, 12),
        Predicate('minPerformanceRating', Decimal('3.5')),
        Predicate('genders', ('FEMALE',)),
    )


def test_empty_criteria_make_everyone_eligible(make_employee):
    assert parse_criteria(None) == ()
    assert evaluate_eligibility((), make_employee(), AS_OF) == (True, [])


@pytest.mark.parametrize("criteria", [{'favouriteColour': 'blue'}, {'minBand': 'Z9'}, ['minBand']])
def test_unknown_or_malformed_criteria_are_rejected(criteria):
    with pytest.raises(ValidationError):
        parse_criteria(criteria)


def test_every_failed_predicate_is_reported(make_employee):
    employee = make_employee(band='P1', date_of_joining=date(2025, 1, 1), employment_type='CONTRACTOR')
    predicates = parse_criteria({'minBandLevel': 'P2', 'minTenureMonths': 12,
                                 'employmentTypes': ['FULL_TIME'], 'genders': ['MALE', 'FEMALE']})
    eligible, failed = evaluate_eligibility(predicates, employee, AS_OF)

    assert not eligible
    assert failed == [
        'Requires band P2+',
        'Requires 12 months tenure (current: 5mo)',
        'Requires employment type: FULL_TIME',
    ]


def test_missing_rating_fails_rating_predicate(make_employee):
    eligible, failed = evaluate_eligibility(parse_criteria({'minRating': 3}), make_employee(), AS_OF)
    assert not eligible


def test_rsu_grants_need_the_minimum_band(make_employee):
    ensure_rsu_eligible(make_employee(band='P2'), AS_OF)
    ensure_rsu_eligible(make_employee(band='M1'), AS_OF)
    with pytest.raises(IneligibleEmployee):
        ensure_rsu_eligible(make_employee(band='P1'), AS_OF)


def test_eligibility_gap_lists_qualified_employees_without_active_grant(make_employee, make_grant):
    employees = [
        make_employee(id='E1', band='P3', annual_fixed=2000000),
        make_employee(id='E2', band='P3'),
        make_employee(id='E3', band='P3', date_of_joining=date(2025, 1, 1)),
        make_employee(id='E4', band='A2'),
        make_employee(id='E5', band='M1', annual_fixed=3000000),
    ]
    grants = [make_grant(id='G2', employee_id='E2'), make_grant(id='G5', employee_id='E5', status=GRANT_CANCELLED)]
    gap = rsu_eligibility_gap(employees, grants, AS_OF)

    assert [g['employee_id'] for g in gap] == ['E1', 'E5']
    assert gap[0]['suggested_grant_value'] == Decimal('1000000')
    assert gap[1]['tenure_months'] == 65
