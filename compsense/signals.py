# ==============================================================================
# compsense/signals.py
# ------------------------------------------------------------------------------
# One-way notifications sent after the engine's results are committed.
# Receivers (mailers, chat hooks, audit sinks) subscribe to these; a failing
# receiver is logged and never undoes or blocks the computation.
# ==============================================================================

import logging

from blinker import Namespace

_signals = Namespace()

# sender: the app; kwargs: grant_id, employee_id, vesting_date, units_vesting
vesting_due = _signals.signal('vesting-due')

# sender: the app; kwargs: scenario_id, affected_count, delta
scenario_applied = _signals.signal('scenario-applied')


def notify(signal, sender, **payload):
    """Sends ``signal`` to every receiver, isolating receiver failures."""
    for receiver in list(signal.receivers_for(sender)):
        try:
            receiver(sender, **payload)
        except Exception:
            logging.exception(f"Receiver {receiver!r} for '{signal.name}' failed; notification dropped.")


def connect_default_receivers(app):
    """Logs every notification through the app logger."""

    def log_vesting_due(sender, **payload):
        sender.logger.info(
            f"Vesting due: grant {payload['grant_id']} releases {payload['units_vesting']} units "
            f"on {payload['vesting_date']} (employee {payload['employee_id']})"
        )

    def log_scenario_applied(sender, **payload):
        sender.logger.info(
            f"Scenario {payload['scenario_id']} applied to {payload['affected_count']} employees "
            f"(cost delta {payload['delta']})"
        )

    vesting_due.connect(log_vesting_due, sender=app, weak=False)
    scenario_applied.connect(log_scenario_applied, sender=app, weak=False)
