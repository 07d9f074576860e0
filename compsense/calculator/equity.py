# ==============================================================================
# compsense/calculator/equity.py
# ------------------------------------------------------------------------------
# Pay-equity scorer and the pay-equity analytics behind it (gender gap,
# compa-ratio distribution, heatmap, new-hire parity).
# ==============================================================================

import logging

import pandas as pd

from .bands import resolve_population, in_compa_range, IN_RANGE
from .policy import DEFAULT_POLICY
from .records import EquityScore, EquityComponents
from .utils import add_months, clamp, round_score, to_date

COMPA_BINS = [
    ('<70%', 0, 70),
    ('70-80%', 70, 80),
    ('80-90%', 80, 90),
    ('90-100%', 90, 100),
    ('100-110%', 100, 110),
    ('110-120%', 110, 120),
    ('>120%', 120, float('inf')),
]


def _gender_gap(employees, policy):
    """
    Gap between the two policy gender groups as a percentage of the
    higher-paid group's average. None when either group is empty or
    nobody in either group is paid.
    """
    group_a, group_b = policy.GENDER_GROUPS
    pay_a = [e.annual_fixed for e in employees if e.gender == group_a]
    pay_b = [e.annual_fixed for e in employees if e.gender == group_b]
    if not pay_a or not pay_b:
        return None
    avg_a = sum(pay_a) / len(pay_a)
    avg_b = sum(pay_b) / len(pay_b)
    reference = max(avg_a, avg_b)
    if reference == 0:
        return None
    return float(abs(avg_a - avg_b) / reference * 100)


def compute_equity_score(employees, bands, as_of, policy=None):
    """
    Aggregates the population into a single 0-100 equity score.

    Components:
        - gender: 100 - |gap%| × GENDER_GAP_SENSITIVITY, not applicable when
          one of the two groups is empty.
        - compa: share of resolved employees whose compa-ratio lies in
          [COMPA_RANGE_MIN, COMPA_RANGE_MAX].
        - outlier: 100 - (outlier share %) × OUTLIER_WEIGHT, where outliers
          are employees paid below their band min or above their band max.

    The composite is the weighted average of the applicable components, with
    EQUITY_WEIGHTS renormalized over those components. Employees without an
    effective band are left out of the compa and outlier components and
    listed in ``excluded``. An empty population scores None.

    Args:
        employees (list[EmployeeRecord]): Population snapshot.
        bands (list[SalaryBandRecord]): All salary band rows.
        as_of (date): Date used to pick each code's effective band.
        policy (CompensationPolicy): Weights and sensitivity constants.

    Returns:
        EquityScore
    """
    policy = policy or DEFAULT_POLICY
    as_of = to_date(as_of)
    if not employees:
        logging.info('Equity score requested for an empty population; reporting no score.')
        return EquityScore(score=None)

    resolved, _, excluded = resolve_population(employees, bands, as_of)

    gap_percent = _gender_gap(employees, policy)
    gender_score = None
    if gap_percent is not None:
        gender_score = clamp(100 - gap_percent * policy.GENDER_GAP_SENSITIVITY, 0, 100)

    scored = len(resolved)
    compa_in_range = sum(1 for r in resolved.values() if in_compa_range(r.compa_ratio, policy))
    band_in_range = sum(1 for r in resolved.values() if r.status == IN_RANGE)
    outlier_count = scored - band_in_range

    compa_score = outlier_score = band_in_range_percent = None
    if scored:
        compa_score = compa_in_range / scored * 100
        band_in_range_percent = band_in_range / scored * 100
        outlier_score = clamp(100 - (outlier_count / scored * 100) * policy.OUTLIER_WEIGHT, 0, 100)

    components = {'gender': gender_score, 'compa': compa_score, 'outlier': outlier_score}
    applicable = {name: value for name, value in components.items() if value is not None}
    weight_total = sum(policy.EQUITY_WEIGHTS[name] for name in applicable)
    score = None
    if applicable and weight_total > 0:
        score = sum(value * policy.EQUITY_WEIGHTS[name] for name, value in applicable.items()) / weight_total

    rounded = {name: round_score(value) for name, value in components.items()}
    logging.info(
        f"Equity score over {len(employees)} employees ({scored} resolved, {len(excluded)} excluded): "
        f"score={round_score(score)}, components={rounded}"
    )
    return EquityScore(
        score=round_score(score),
        components=EquityComponents(
            gender_score=round_score(gender_score),
            compa_score=round_score(compa_score),
            outlier_score=round_score(outlier_score),
        ),
        total_employees=len(employees),
        scored_employees=scored,
        gap_percent=round_score(gap_percent, 2),
        outlier_count=outlier_count,
        compa_in_range_count=compa_in_range,
        band_in_range_count=band_in_range,
        band_in_range_percent=round_score(band_in_range_percent),
        excluded=excluded,
    )


# --- Analytics ---

def _frame(employees, resolved=None):
    rows = []
    for e in employees:
        row = {
            'employee_id': e.id,
            'gender': e.gender,
            'department': e.department,
            'band': e.band,
            'annual_fixed': float(e.annual_fixed),
            'date_of_joining': pd.Timestamp(e.date_of_joining),
        }
        if resolved is not None:
            result = resolved.get(e.id)
            row['compa_ratio'] = result.compa_ratio if result else None
        rows.append(row)
    return pd.DataFrame(rows)


def _gap_row(group_avgs, group_counts, policy):
    group_a, group_b = policy.GENDER_GROUPS
    avg_a, avg_b = group_avgs.get(group_a), group_avgs.get(group_b)
    row = {
        'avg': {group_a: avg_a, group_b: avg_b},
        'count': {group_a: int(group_counts.get(group_a, 0)), group_b: int(group_counts.get(group_b, 0))},
        'gap_percent': None,
        'gap_amount': None,
        'higher_paid_group': None,
    }
    if avg_a is None or avg_b is None or pd.isna(avg_a) or pd.isna(avg_b):
        return row
    higher, lower = (group_a, group_b) if avg_a >= avg_b else (group_b, group_a)
    reference = row['avg'][higher]
    if reference == 0:
        return row
    row['gap_amount'] = round(reference - row['avg'][lower], 2)
    row['gap_percent'] = round((reference - row['avg'][lower]) / reference * 100, 2)
    row['higher_paid_group'] = higher
    return row


def gender_pay_gap(employees, policy=None):
    """Gender pay gap overall and per department, largest gaps first."""
    policy = policy or DEFAULT_POLICY
    if not employees:
        return {'overall': None, 'by_department': []}
    df = _frame(employees)
    df = df[df['gender'].isin(policy.GENDER_GROUPS)]

    overall = _gap_row(df.groupby('gender')['annual_fixed'].mean().to_dict(),
                       df.groupby('gender').size().to_dict(), policy)

    by_department = []
    for department, dept_df in df.groupby('department'):
        row = _gap_row(dept_df.groupby('gender')['annual_fixed'].mean().to_dict(),
                       dept_df.groupby('gender').size().to_dict(), policy)
        row['department'] = department
        by_department.append(row)
    by_department.sort(key=lambda r: (r['gap_percent'] is None, -(r['gap_percent'] or 0), r['department']))
    return {'overall': overall, 'by_department': by_department}


def compa_ratio_distribution(employees, bands, as_of):
    """Counts of resolved employees per compa-ratio bin."""
    resolved, _, _ = resolve_population(employees, bands, to_date(as_of))
    ratios = [r.compa_ratio for r in resolved.values()]
    return [
        {'label': label, 'count': sum(1 for cr in ratios if low <= cr < high)}
        for label, low, high in COMPA_BINS
    ]


def compa_heatmap(employees, bands, as_of):
    """Average compa-ratio per department × band cell."""
    resolved, _, _ = resolve_population(employees, bands, to_date(as_of))
    if not resolved:
        return []
    df = _frame(employees, resolved).dropna(subset=['compa_ratio'])
    grouped = df.groupby(['department', 'band'])['compa_ratio'].agg(['mean', 'count']).reset_index()
    return [
        {'department': r['department'], 'band': r['band'],
         'avg_compa_ratio': round(float(r['mean']), 1), 'count': int(r['count'])}
        for _, r in grouped.iterrows()
    ]


def new_hire_parity(employees, as_of, window_months=6, tolerance_percent=10):
    """
    Compares average pay of recent hires (joined within ``window_months``)
    against existing staff in the same department and band. Only cells
    outside ±``tolerance_percent`` are returned, largest deviation first.
    """
    as_of = to_date(as_of)
    if not employees:
        return []
    df = _frame(employees)
    cutoff = pd.Timestamp(add_months(as_of, -window_months))
    df['is_new_hire'] = df['date_of_joining'] >= cutoff
    averages = df.groupby(['department', 'band', 'is_new_hire'])['annual_fixed'].agg(['mean', 'count'])

    results = []
    for (department, band), cell in averages.groupby(level=[0, 1]):
        cell = cell.droplevel([0, 1])
        if True not in cell.index or False not in cell.index:
            continue
        new_avg, existing_avg = float(cell.loc[True, 'mean']), float(cell.loc[False, 'mean'])
        parity = new_avg / existing_avg * 100 if existing_avg > 0 else 100.0
        if parity > 100 + tolerance_percent:
            issue = 'NEW_HIRE_PREMIUM'
        elif parity < 100 - tolerance_percent:
            issue = 'EXISTING_UNDERPAID'
        else:
            continue
        results.append({
            'department': department,
            'band': band,
            'new_hire_avg': round(new_avg, 2),
            'existing_avg': round(existing_avg, 2),
            'new_hire_count': int(cell.loc[True, 'count']),
            'existing_count': int(cell.loc[False, 'count']),
            'parity_percent': round(parity, 2),
            'issue': issue,
        })
    return sorted(results, key=lambda r: -abs(r['parity_percent'] - 100))
