# ==============================================================================
# compsense/calculator/vesting.py
# ------------------------------------------------------------------------------
# RSU vesting schedule generator. This module is the only place that decides
# how many units of a grant have vested on a given date; every other part of
# the system asks it instead of keeping its own running total.
# ==============================================================================

import logging
from datetime import timedelta
from decimal import Decimal

from .errors import InvalidGrant, VestingOverflow
from .policy import DEFAULT_POLICY
from .records import VestingEvent, GRANT_CANCELLED, GRANT_FULLY_VESTED, GRANT_ACTIVE
from .utils import add_months, to_date


def validate_grant(grant):
    """Rejects malformed grant parameters before any event is produced."""
    problems = []
    if not isinstance(grant.total_units, int) or isinstance(grant.total_units, bool):
        problems.append(f"total_units must be an integer, got {grant.total_units!r}")
    elif grant.total_units < 0:
        problems.append(f"total_units must be >= 0, got {grant.total_units}")
    if grant.cliff_months < 0:
        problems.append(f"cliff_months must be >= 0, got {grant.cliff_months}")
    if grant.cliff_months > grant.vesting_schedule_months:
        problems.append(
            f"cliff_months ({grant.cliff_months}) cannot exceed vesting_schedule_months ({grant.vesting_schedule_months})"
        )
    if grant.grant_date is None:
        problems.append('grant_date is required')
    if problems:
        raise InvalidGrant(f"Invalid RSU grant '{grant.id}'", details=problems)


def _vesting_offsets(cliff_months, vesting_months, period_months):
    """Month offsets from the grant date: the cliff, each period after it, and the final month."""
    offsets = [cliff_months]
    month = cliff_months + period_months
    while month < vesting_months:
        offsets.append(month)
        month += period_months
    if vesting_months > cliff_months:
        offsets.append(vesting_months)
    return offsets


def vesting_terms(grant, policy=None):
    """
    Cliff fraction, periodic fraction and period length that apply to a grant:
    the terms stored on the grant, or the policy's for any term it lacks.
    """
    policy = policy or DEFAULT_POLICY
    cliff = policy.cliff_fraction if grant.cliff_percent is None else Decimal(str(grant.cliff_percent)) / 100
    periodic = (policy.periodic_fraction if grant.periodic_percent is None
                else Decimal(str(grant.periodic_percent)) / 100)
    period = policy.VESTING_PERIOD_MONTHS if grant.vesting_period_months is None else grant.vesting_period_months
    return cliff, periodic, period


def generate_vesting_schedule(grant, as_of, policy=None):
    """
    Builds the full vesting schedule of a grant and flags which tranches have
    vested by ``as_of``.

    The cliff tranche releases ``floor(total × cliff fraction)`` units, each
    later period releases ``floor(total × periodic fraction)`` units, and the
    tranche falling on the last month of the schedule releases whatever is
    still unvested. Generation stops as soon as the whole grant is allocated,
    so no tranche is ever larger than the remaining balance.

    The result depends only on the arguments: calling it again with the same
    grant terms and ``as_of`` gives an identical list.

    Args:
        grant (RsuGrantRecord): The grant terms.
        as_of (date): Reference date for ``is_vested``.
        policy (CompensationPolicy): Fallback for vesting terms the grant does not carry.

    Returns:
        list[VestingEvent]: Events ordered by vesting date.

    Raises:
        InvalidGrant: If the grant parameters are malformed.
    """
    validate_grant(grant)
    as_of = to_date(as_of)
    grant_date = to_date(grant.grant_date)
    total = grant.total_units

    cliff_fraction, periodic_fraction, period_months = vesting_terms(grant, policy)
    cliff_units = int(total * cliff_fraction)
    periodic_units = int(total * periodic_fraction)
    offsets = _vesting_offsets(grant.cliff_months, grant.vesting_schedule_months, period_months)

    events = []
    released = 0
    for index, offset in enumerate(offsets):
        remaining = total - released
        if remaining <= 0:
            break
        if index == len(offsets) - 1:
            units = remaining
        elif index == 0:
            units = min(cliff_units, remaining)
        else:
            units = min(periodic_units, remaining)
        if units == 0:
            continue

        vesting_date = add_months(grant_date, offset)
        is_vested = vesting_date <= as_of
        events.append(VestingEvent(
            rsu_grant_id=grant.id,
            vesting_date=vesting_date,
            units_vesting=units,
            is_vested=is_vested,
            vested_at=vesting_date if is_vested else None,
        ))
        released += units
        logging.debug(f"Grant {grant.id}: month {offset} -> {units} units on {vesting_date} (vested={is_vested})")

    if released > total:
        raise VestingOverflow(
            f"Schedule for grant '{grant.id}' releases {released} units, more than the {total} granted",
            details={'released': released, 'total_units': total},
        )
    logging.debug(f"Generated {len(events)} vesting events for grant {grant.id} as of {as_of}.")
    return events


def vested_units(grant, as_of, policy=None):
    """Units vested on ``as_of``, read off the generated schedule."""
    as_of = to_date(as_of)
    return sum(e.units_vesting for e in generate_vesting_schedule(grant, as_of, policy) if e.vesting_date <= as_of)


def derive_grant_status(grant, vested):
    if grant.status == GRANT_CANCELLED:
        return GRANT_CANCELLED
    if grant.total_units > 0 and vested >= grant.total_units:
        return GRANT_FULLY_VESTED
    return GRANT_ACTIVE


def summarize_grant(grant, as_of, policy=None):
    """Vested/unvested split and valuation of a single grant on ``as_of``."""
    as_of = to_date(as_of)
    events = generate_vesting_schedule(grant, as_of, policy)
    vested = sum(e.units_vesting for e in events if e.is_vested)
    unvested = grant.total_units - vested
    upcoming = [e for e in events if not e.is_vested]
    return {
        'grant_id': grant.id,
        'employee_id': grant.employee_id,
        'total_units': grant.total_units,
        'vested_units': vested,
        'unvested_units': unvested,
        'vested_percent': float(vested * 100 / grant.total_units) if grant.total_units else None,
        'next_vesting_date': upcoming[0].vesting_date if upcoming else None,
        'current_value': grant.current_price * vested,
        'unvested_value': grant.current_price * unvested,
        'gain_per_unit': grant.current_price - grant.price_at_grant,
        'status': derive_grant_status(grant, vested),
        'events': events,
    }


def upcoming_vesting(grants, as_of, lookahead_days, policy=None):
    """
    Unvested tranches of non-cancelled grants that fall within
    ``(as_of, as_of + lookahead_days]``, soonest first.
    """
    as_of = to_date(as_of)
    horizon = as_of + timedelta(days=lookahead_days)
    upcoming = []
    for grant in grants:
        if grant.status == GRANT_CANCELLED:
            continue
        for event in generate_vesting_schedule(grant, as_of, policy):
            if as_of < event.vesting_date <= horizon:
                upcoming.append({
                    'grant_id': grant.id,
                    'employee_id': grant.employee_id,
                    'vesting_date': event.vesting_date,
                    'units_vesting': event.units_vesting,
                    'estimated_value': grant.current_price * event.units_vesting,
                })
    return sorted(upcoming, key=lambda u: (u['vesting_date'], u['grant_id']))


def portfolio_summary(grants, as_of, policy=None):
    """Aggregate value of all active grants, split into vested and unvested."""
    total_value = vested_value = 0
    active = [g for g in grants if g.status != GRANT_CANCELLED]
    for grant in active:
        vested = vested_units(grant, as_of, policy)
        total_value += grant.current_price * grant.total_units
        vested_value += grant.current_price * vested
    return {
        'total_grants': len(active),
        'total_value': total_value,
        'vested_value': vested_value,
        'unvested_value': total_value - vested_value,
    }
