# ==============================================================================
# compsense/main/routes.py
# ------------------------------------------------------------------------------
# JSON endpoints of the main blueprint. Routes only parse input and shape
# output; the work happens in compsense.main.services.
# ==============================================================================

import json
from datetime import date

from flask import request, jsonify, current_app
from werkzeug.datastructures import MultiDict

from compsense.main import bp
from compsense.calculator.errors import EngineError, ValidationError
from compsense.calculator.records import jsonable
from compsense.main import services
from compsense.main.forms import (RsuGrantForm, PayoutForm, AchievementForm, ScenarioForm, ScenarioApplyForm,
                                  AppSettingForm)
from compsense.main.utils import as_of_arg, parse_as_of
from compsense.models import AppSetting

# --- Helper Functions ---

def _json_body():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def _form(form_class, payload):
    """Validates the scalar fields of a JSON body with a Flask-WTF form."""
    formdata = MultiDict({key: str(value) for key, value in payload.items()
                          if value is not None and not isinstance(value, (dict, list))})
    form = form_class(formdata=formdata)
    if not form.validate():
        raise ValidationError('Request validation failed', details=form.errors)
    return form


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer, got {raw!r}", details={name: raw})


@bp.app_errorhandler(EngineError)
def handle_engine_error(error):
    """Every engine failure leaves the API as {"error", "message", "details"}."""
    if error.status_code >= 500:
        current_app.logger.error(f"{error.code}: {error.message}", exc_info=True)
    else:
        current_app.logger.info(f"Request rejected with {error.code}: {error.message}")
    return jsonify(jsonable(error.to_dict())), error.status_code


@bp.route('/health')
def health():
    return jsonify({'status': 'ok', 'date': date.today().isoformat()})


# --- RSU ---

@bp.route('/rsu/grants', methods=['POST'])
def create_grant():
    payload = _json_body()
    form = _form(RsuGrantForm, payload)
    grant, events = services.create_grant(
        employee_id=form.employee_id.data,
        grant_date=form.grant_date.data,
        total_units=form.total_units.data,
        price_at_grant=form.price_at_grant.data or 0,
        current_price=form.current_price.data or 0,
        cliff_months=form.cliff_months.data,
        vesting_schedule_months=form.vesting_schedule_months.data,
        as_of=parse_as_of(payload.get('as_of'), date.today()),
    )
    return jsonify({
        'id': grant.id,
        'employeeId': grant.employee_id,
        'totalUnits': grant.total_units,
        'vestedUnits': grant.vested_units,
        'status': grant.status,
        'events': [e.to_dict() for e in events],
    }), 201


@bp.route('/rsu/grants/<grant_id>/schedule')
def grant_schedule(grant_id):
    return jsonify(services.grant_schedule(grant_id, as_of_arg(date.today())))


@bp.route('/rsu/upcoming')
def upcoming_vesting():
    days = _int_arg('days', current_app.config.get('VESTING_LOOKAHEAD_DAYS', 30))
    return jsonify(services.upcoming_vesting_report(days, as_of_arg(date.today())))


@bp.route('/rsu/portfolio')
def rsu_portfolio():
    return jsonify(services.rsu_portfolio(as_of_arg(date.today())))


@bp.route('/rsu/eligibility-gap')
def rsu_eligibility_gap():
    return jsonify(services.rsu_gap_report(as_of_arg(date.today())))


# --- Variable pay ---

@bp.route('/variable-pay/calculate', methods=['POST'])
def calculate_payout():
    form = _form(PayoutForm, _json_body())
    return jsonify(services.preview_payout(
        plan_id=form.plan_id.data,
        achieved_amount=form.achieved_amount.data,
        target_amount=form.target_amount.data,
        employee_id=form.employee_id.data or None,
    ))


@bp.route('/variable-pay/achievements', methods=['POST'])
def save_achievement():
    payload = _json_body()
    form = _form(AchievementForm, payload)
    record = services.calculate_and_save_achievement(
        employee_id=form.employee_id.data,
        plan_id=form.plan_id.data,
        period=form.period.data,
        achieved_amount=form.achieved_amount.data,
        target_amount=form.target_amount.data,
        as_of=parse_as_of(payload.get('as_of'), date.today()),
    )
    return jsonify(record.to_dict()), 201


@bp.route('/variable-pay/analytics')
def variable_pay_analytics():
    return jsonify(services.variable_pay_analytics(request.args.get('period') or None))


# --- Pay equity ---

@bp.route('/pay-equity/score')
def pay_equity_score():
    return jsonify(services.equity_report(as_of_arg(date.today())))


@bp.route('/pay-equity/outliers')
def pay_equity_outliers():
    return jsonify(services.outlier_report(as_of_arg(date.today())))


# --- Scenarios ---

@bp.route('/scenarios', methods=['POST'])
def create_scenario():
    payload = _json_body()
    form = _form(ScenarioForm, payload)
    scenario = services.create_scenario(form.name.data, payload.get('rules'), form.description.data)
    return jsonify(scenario.to_dict()), 201


@bp.route('/scenarios/<scenario_id>/run', methods=['POST'])
def run_scenario(scenario_id):
    payload = _json_body()
    result = services.run_scenario_by_id(scenario_id, parse_as_of(payload.get('as_of'), date.today()))
    return jsonify(result.to_dict(include_changes=bool(payload.get('include_changes'))))


@bp.route('/scenarios/compare', methods=['POST'])
def compare_scenarios():
    payload = _json_body()
    scenario_ids = payload.get('scenario_ids')
    if not isinstance(scenario_ids, list) or len(scenario_ids) < 2:
        raise ValidationError("'scenario_ids' must list at least two scenarios", details={'scenario_ids': scenario_ids})
    results = services.compare_scenarios_by_id(scenario_ids, parse_as_of(payload.get('as_of'), date.today()))
    return jsonify({'scenarios': [r.to_dict() for r in results]})


@bp.route('/scenarios/<scenario_id>/apply', methods=['POST'])
def apply_scenario(scenario_id):
    payload = _json_body()
    form = _form(ScenarioApplyForm, payload)
    outcome = services.apply_scenario(scenario_id, form.confirmation.data,
                                      parse_as_of(payload.get('as_of'), date.today()))
    return jsonify(outcome)


# --- Settings ---

def _setting_dict(setting):
    return {'key': setting.key, 'value': setting.get_value(), 'valueType': setting.value_type,
            'description': setting.description}


@bp.route('/settings', methods=['GET'])
def list_settings():
    settings = AppSetting.query.order_by(AppSetting.key).all()
    return jsonify([_setting_dict(s) for s in settings])


@bp.route('/settings/<key>', methods=['PUT'])
def edit_setting(key):
    payload = _json_body()
    value = payload.get('value')
    if isinstance(value, (dict, list)):
        payload = dict(payload, value=json.dumps(value))
    form = _form(AppSettingForm, payload)
    setting = services.update_setting(key, form.value.data)
    return jsonify(_setting_dict(setting))
