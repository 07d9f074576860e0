# ==============================================================================
# compsense/calculator/accelerator.py
# ------------------------------------------------------------------------------
# Variable-pay payout calculator: maps an achievement percentage onto a
# plan's accelerator tiers and prices the payout.
# ==============================================================================

import logging
import re
from collections import namedtuple
from decimal import Decimal

import pandas as pd

from .errors import InvalidTarget, ValidationError
from .policy import DEFAULT_POLICY
from .records import AcceleratorTier, CommissionAchievementRecord
from .utils import round2, to_decimal

BASELINE_MULTIPLIER = Decimal('1.0')

PERIOD_PATTERN = re.compile(r'^\d{4}-(Q[1-4]|H[12]|M(0[1-9]|1[0-2])|FY)$')

ACHIEVEMENT_BUCKETS = [
    # (label, lower bound inclusive, upper bound exclusive)
    ('<50%', 0, 50),
    ('50-80%', 50, 80),
    ('80-100%', 80, 100),
    ('100-120%', 100, 120),
    ('>120%', 120, float('inf')),
]

PayoutResult = namedtuple('PayoutResult', ['achievement_percent', 'applied_tier', 'multiplier', 'payout_amount'])


def parse_tiers(raw_tiers):
    """
    Builds AcceleratorTier objects from loosely-typed dicts, e.g. the JSON
    column of a commission plan: ``[{"threshold": 80, "multiplier": 0.8}, ...]``.
    """
    tiers = []
    for position, raw in enumerate(raw_tiers or []):
        try:
            tiers.append(AcceleratorTier(
                threshold=to_decimal(raw['threshold'], 'threshold'),
                multiplier=to_decimal(raw['multiplier'], 'multiplier'),
            ))
        except (KeyError, TypeError):
            raise ValidationError(f"Accelerator tier #{position + 1} needs 'threshold' and 'multiplier'", details={'tier': raw})
    return tuple(tiers)


def select_tier(tiers, achievement_percent):
    """
    The highest-threshold tier whose threshold is at or below
    ``achievement_percent``. Equal thresholds resolve to the larger
    multiplier. Returns None when the achievement is below every tier.
    """
    qualifying = [t for t in tiers if t.threshold <= achievement_percent]
    if not qualifying:
        return None
    return max(qualifying, key=lambda t: (t.threshold, t.multiplier))


def calculate_payout(plan, achieved_amount, target_amount):
    """
    Args:
        plan (CommissionPlanRecord): Plan holding the accelerator tiers.
        achieved_amount: Amount achieved in the period.
        target_amount: Target for the period; must be positive.

    Returns:
        PayoutResult: achievement percent (2 dp), the tier applied (or None
        for the 1.0 baseline), the multiplier and the payout (2 dp).

    Raises:
        InvalidTarget: If the target is zero or negative.
    """
    achieved_amount = to_decimal(achieved_amount, 'achieved_amount')
    target_amount = to_decimal(target_amount, 'target_amount')
    if target_amount <= 0:
        raise InvalidTarget(
            f"Target amount must be positive to compute achievement, got {target_amount}",
            details={'plan_id': plan.id, 'target_amount': str(target_amount)},
        )

    achievement_percent = round2(achieved_amount / target_amount * 100)
    tier = select_tier(plan.accelerator_tiers, achievement_percent)
    multiplier = tier.multiplier if tier is not None else BASELINE_MULTIPLIER
    payout_amount = round2(target_amount * multiplier)

    logging.debug(
        f"Plan {plan.id}: achievement {achievement_percent}% -> "
        f"{'tier ' + str(tier.threshold) if tier else 'baseline'} x{multiplier} = {payout_amount}"
    )
    return PayoutResult(achievement_percent, tier, multiplier, payout_amount)


def period_target(annual_fixed, plan, policy=None):
    """
    Target variable pay for one period: annual fixed × target variable % spread
    over the policy's number of periods per year (quarterly by default).
    """
    policy = policy or DEFAULT_POLICY
    annual_fixed = to_decimal(annual_fixed, 'annual_fixed')
    return round2(annual_fixed * plan.target_variable_percent / 100 / policy.VARIABLE_PAY_PERIODS_PER_YEAR)


def validate_period(period):
    if not isinstance(period, str) or not PERIOD_PATTERN.match(period):
        raise ValidationError(
            f"Period must look like '2025-Q1', '2025-H1', '2025-M03' or '2025-FY', got {period!r}",
            details={'period': period},
        )
    return period


def build_achievement(employee_id, plan, period, achieved_amount, target_amount):
    """Computes the payout and packages it as an achievement record ready to persist."""
    validate_period(period)
    result = calculate_payout(plan, achieved_amount, target_amount)
    return CommissionAchievementRecord(
        employee_id=employee_id,
        plan_id=plan.id,
        period=period,
        target_amount=round2(target_amount),
        achieved_amount=round2(achieved_amount),
        achievement_percent=result.achievement_percent,
        payout_amount=result.payout_amount,
    )


def achievement_analytics(achievements, band_by_employee=None):
    """
    Summary statistics over stored achievements.

    Args:
        achievements (list[CommissionAchievementRecord]): Records to summarize.
        band_by_employee (dict): Optional {employee_id: band code} for the per-band view.

    Returns:
        dict: totals, average achievement, bucket distribution and per-band averages.
    """
    if not achievements:
        return {
            'total_achievements': 0,
            'avg_achievement_percent': None,
            'total_target_amount': 0.0,
            'total_payout_amount': 0.0,
            'distribution': [{'label': label, 'count': 0} for label, _, _ in ACHIEVEMENT_BUCKETS],
            'by_band': [],
        }

    df = pd.DataFrame([{
        'employee_id': a.employee_id,
        'target_amount': float(a.target_amount),
        'payout_amount': float(a.payout_amount),
        'achievement_percent': float(a.achievement_percent),
    } for a in achievements])

    distribution = []
    for label, low, high in ACHIEVEMENT_BUCKETS:
        in_bucket = (df['achievement_percent'] >= low) & (df['achievement_percent'] < high)
        distribution.append({'label': label, 'count': int(in_bucket.sum())})

    by_band = []
    if band_by_employee:
        df['band'] = df['employee_id'].map(band_by_employee)
        grouped = df.dropna(subset=['band']).groupby('band')['achievement_percent'].mean()
        by_band = [{'band': band, 'avg_achievement': round(avg, 1)} for band, avg in grouped.items()]

    return {
        'total_achievements': len(df),
        'avg_achievement_percent': round(df['achievement_percent'].mean(), 1),
        'total_target_amount': round(df['target_amount'].sum(), 2),
        'total_payout_amount': round(df['payout_amount'].sum(), 2),
        'distribution': distribution,
        'by_band': by_band,
    }
