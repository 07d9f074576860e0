# ==============================================================================
# run.py
# ------------------------------------------------------------------------------
# The main entry point to launch the Flask application.
# ==============================================================================

from compsense import create_app, db
from compsense.models import (AppSetting, Employee, SalaryBand, RsuGrant, RsuVestingEvent, CommissionPlan,
                              CommissionAchievement, Scenario)

# Create the Flask application instance using the factory function
app = create_app()

@app.shell_context_processor
def make_shell_context():
    """Provides a shell context for the `flask shell` command."""
    return {
        'db': db,
        'AppSetting': AppSetting,
        'Employee': Employee,
        'SalaryBand': SalaryBand,
        'RsuGrant': RsuGrant,
        'RsuVestingEvent': RsuVestingEvent,
        'CommissionPlan': CommissionPlan,
        'CommissionAchievement': CommissionAchievement,
        'Scenario': Scenario,
    }

if __name__ == '__main__':
    app.run(debug=True)
