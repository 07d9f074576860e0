# ==============================================================================
# compsense/calculator/bands.py
# ------------------------------------------------------------------------------
# Band & compa-ratio resolver. Picks the salary band in force on a date and
# positions an employee's fixed pay against it.
# ==============================================================================

import logging
from collections import namedtuple

from .errors import NoEffectiveBand
from .utils import round_int, to_date

BELOW = 'BELOW'
IN_RANGE = 'IN_RANGE'
ABOVE = 'ABOVE'

CompaResult = namedtuple('CompaResult', ['compa_ratio', 'status'])


def select_effective_band(bands, band_code, as_of):
    """
    Chooses, among the bands sharing ``band_code``, the one with the latest
    effective date that is not after ``as_of``.

    Raises:
        NoEffectiveBand: If no band with that code is in force on ``as_of``.
    """
    as_of = to_date(as_of)
    candidates = [b for b in bands if b.band_code == band_code and b.effective_date <= as_of]
    if not candidates:
        raise NoEffectiveBand(band_code, as_of)
    return max(candidates, key=lambda b: b.effective_date)


def effective_band_map(bands, as_of):
    """Returns {band_code: effective band} for every code that has one on ``as_of``."""
    resolved = {}
    for code in sorted({b.band_code for b in bands}):
        try:
            resolved[code] = select_effective_band(bands, code, as_of)
        except NoEffectiveBand:
            logging.debug(f"Band '{code}' has no row effective on {as_of}; only future-dated rows exist.")
    return resolved


def compa_ratio_for(annual_fixed, band):
    return round_int(annual_fixed / band.mid_salary * 100)


def band_status(annual_fixed, band):
    if annual_fixed < band.min_salary:
        return BELOW
    if annual_fixed > band.max_salary:
        return ABOVE
    return IN_RANGE


def resolve_compa_ratio(employee, effective_band):
    """
    Args:
        employee (EmployeeRecord): The employee snapshot.
        effective_band (SalaryBandRecord): The band in force for the employee's band code.

    Returns:
        CompaResult: Integer-percent compa-ratio and band-membership status.
    """
    return CompaResult(
        compa_ratio=compa_ratio_for(employee.annual_fixed, effective_band),
        status=band_status(employee.annual_fixed, effective_band),
    )


def in_compa_range(compa_ratio, policy):
    """Policy lens on 'in band': the compa-ratio sits inside [COMPA_RANGE_MIN, COMPA_RANGE_MAX]."""
    return policy.COMPA_RANGE_MIN <= compa_ratio <= policy.COMPA_RANGE_MAX


def resolve_population(employees, bands, as_of):
    """
    Resolves every employee against the band in force on ``as_of``.

    Employees whose band code has no effective row are not defaulted; they
    are reported back in ``excluded`` so callers can leave them out of
    compa-ratio statistics.

    Returns:
        tuple: (resolved, band_by_employee, excluded) where ``resolved`` maps
        employee id to CompaResult, ``band_by_employee`` maps employee id to
        the band used, and ``excluded`` lists {employee_id, band, reason}.
    """
    band_map = effective_band_map(bands, as_of)
    resolved, band_by_employee, excluded = {}, {}, []
    for emp in employees:
        band = band_map.get(emp.band)
        if band is None:
            logging.warning(f"Employee {emp.id} excluded from compa-ratio statistics: no band '{emp.band}' effective on {as_of}.")
            excluded.append({'employee_id': emp.id, 'band': emp.band, 'reason': NoEffectiveBand.code})
            continue
        resolved[emp.id] = resolve_compa_ratio(emp, band)
        band_by_employee[emp.id] = band
    return resolved, band_by_employee, excluded


def band_outliers(employees, bands, as_of):
    """
    Lists employees paid outside their band's min/max with the distance to
    the bound they violate (negative below min, positive above max).
    """
    resolved, band_by_employee, _ = resolve_population(employees, bands, as_of)
    outliers = []
    for emp in employees:
        result = resolved.get(emp.id)
        if result is None or result.status == IN_RANGE:
            continue
        band = band_by_employee[emp.id]
        bound = band.min_salary if result.status == BELOW else band.max_salary
        outliers.append({
            'employee_id': emp.id,
            'name': emp.name,
            'band': emp.band,
            'department': emp.department,
            'annual_fixed': emp.annual_fixed,
            'min_salary': band.min_salary,
            'mid_salary': band.mid_salary,
            'max_salary': band.max_salary,
            'compa_ratio': result.compa_ratio,
            'status': result.status,
            'delta': emp.annual_fixed - bound,
        })
    return sorted(outliers, key=lambda o: (o['compa_ratio'], o['employee_id']))
