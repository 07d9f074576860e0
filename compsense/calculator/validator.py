# ==============================================================================
# compsense/calculator/validator.py
# ------------------------------------------------------------------------------
# Validates loosely-typed scenario rules and accelerator tiers (as they come
# out of JSON columns or request bodies) against the declared schema.
# ==============================================================================

import logging
from decimal import Decimal, InvalidOperation

from .errors import InvalidRule
from .schema import (EXPECTED_ACTIONS, EXPECTED_FILTER_KEYS, RANGE_KEYS, MINIMUM_KEYS,
                     RuleFilter, RuleAction, ScenarioRule)


def _number(value):
    if isinstance(value, bool):
        raise InvalidOperation
    return Decimal(str(value))


def _codes(value):
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, str) for v in value):
        return tuple(value)
    return None


def _parse_filter(raw, prefix, errors):
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        errors.append(f"{prefix}: 'filter' must be an object.")
        return None

    unknown = [key for key in raw if key not in EXPECTED_FILTER_KEYS]
    if unknown:
        errors.append(f"{prefix}: unknown filter keys: {', '.join(sorted(unknown))}.")

    values = {}
    for key, shape in EXPECTED_FILTER_KEYS.items():
        if key not in raw or raw[key] is None:
            continue
        value = raw[key]
        if shape == 'code_or_list':
            codes = _codes(value)
            if codes is None:
                errors.append(f"{prefix}: filter '{key}' must be a string or a non-empty list of strings.")
            values[key] = codes
        elif shape == 'code':
            if not isinstance(value, str):
                errors.append(f"{prefix}: filter '{key}' must be a string.")
            values[key] = value
        else:
            allowed = RANGE_KEYS if shape == 'range' else MINIMUM_KEYS
            if not isinstance(value, dict) or not value or set(value) - allowed:
                errors.append(f"{prefix}: filter '{key}' must be an object with keys {sorted(allowed)}.")
                continue
            bounds = {}
            for bound, number in value.items():
                try:
                    bounds[bound] = _number(number)
                except (InvalidOperation, TypeError, ValueError):
                    errors.append(f"{prefix}: filter '{key}.{bound}' must be a number, got {number!r}.")
            values[key] = bounds

    if 'compaRatio' in values and {'min', 'max'} <= set(values['compaRatio']):
        if values['compaRatio']['min'] > values['compaRatio']['max']:
            errors.append(f"{prefix}: filter 'compaRatio.min' cannot exceed 'compaRatio.max'.")

    tenure = values.get('tenure', {}).get('min')
    return RuleFilter(
        bands=values.get('band'),
        departments=values.get('department'),
        gender=values.get('gender'),
        compa_min=values.get('compaRatio', {}).get('min'),
        compa_max=values.get('compaRatio', {}).get('max'),
        rating_min=values.get('performanceRating', {}).get('min'),
        tenure_min_months=int(tenure) if tenure is not None else None,
    )


def _parse_action(raw, prefix, errors):
    if not isinstance(raw, dict):
        errors.append(f"{prefix}: 'action' must be an object with a 'type'.")
        return None
    action_type = raw.get('type')
    if action_type not in EXPECTED_ACTIONS:
        errors.append(f"{prefix}: action type {action_type!r} is not one of {', '.join(EXPECTED_ACTIONS)}.")
        return None

    value = raw.get('value')
    if EXPECTED_ACTIONS[action_type]:
        if value is None:
            errors.append(f"{prefix}: action {action_type} requires a 'value'.")
            return None
        try:
            value = _number(value)
        except (InvalidOperation, TypeError, ValueError):
            errors.append(f"{prefix}: action value must be a number, got {value!r}.")
            return None
        if action_type == 'SET_COMPA_RATIO' and value <= 0:
            errors.append(f"{prefix}: SET_COMPA_RATIO needs a positive target ratio.")
    else:
        value = None
    return RuleAction(type=action_type, value=value)


def validate_scenario_rules(rules):
    """
    Validates the structure of a scenario's rule list.

    Args:
        rules (list): Raw rules, each ``{"filter": {...}, "action": {"type": ..., "value": ...}}``.

    Returns:
        tuple: A tuple containing:
            - list: Parsed ScenarioRule objects if validation is successful, else None.
            - list: Human-readable error messages if validation fails.
    """
    errors = []
    if not isinstance(rules, (list, tuple)):
        return None, ["'rules' must be a list."]
    if not rules:
        return None, ['A scenario needs at least one rule.']

    parsed = []
    for index, raw in enumerate(rules):
        prefix = f"Rule {index + 1}"
        if not isinstance(raw, dict):
            errors.append(f"{prefix}: must be an object with 'filter' and 'action'.")
            continue
        rule_filter = _parse_filter(raw.get('filter'), prefix, errors)
        action = _parse_action(raw.get('action'), prefix, errors)
        if rule_filter is not None and action is not None:
            parsed.append(ScenarioRule(rule_filter, action))

    if errors:
        return None, errors
    return parsed, []


def parse_scenario_rules(rules):
    """Like validate_scenario_rules, but raises InvalidRule listing every problem."""
    parsed, errors = validate_scenario_rules(rules)
    if errors:
        raise InvalidRule('Scenario rules are invalid', details=errors)
    return parsed


def check_accelerator_tiers(tiers):
    """
    Reports (without rejecting) tier lists that break the plan conventions:
    thresholds should strictly increase and the 100% tier should pay 1.0.

    Returns:
        list: Warning messages, empty when the tiers follow convention.
    """
    warnings = []
    thresholds = [t.threshold for t in tiers]
    if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
        warnings.append('Accelerator thresholds are not strictly increasing.')
    at_target = [t for t in tiers if t.threshold == 100]
    if at_target and any(t.multiplier != 1 for t in at_target):
        warnings.append('The 100% accelerator tier does not pay a 1.0 multiplier.')
    for message in warnings:
        logging.warning(message)
    return warnings
