# ==============================================================================
# compsense/main/forms.py
# ------------------------------------------------------------------------------
# Defines the request forms using Flask-WTF for input validation. The API
# feeds them JSON bodies; field errors come back as a 400 response.
# ==============================================================================

from flask_wtf import FlaskForm
from wtforms import StringField, DecimalField, IntegerField, DateField, TextAreaField
from wtforms.validators import DataRequired, NumberRange, InputRequired, Optional, Regexp

from compsense.calculator.accelerator import PERIOD_PATTERN


class RsuGrantForm(FlaskForm):
    """Form for creating an RSU grant."""
    employee_id = StringField('Employee', validators=[DataRequired(message="Employee is required.")])
    grant_date = DateField('Grant date', validators=[InputRequired(message="Grant date is required.")])
    total_units = IntegerField('Total units', validators=[InputRequired(message="Total units are required."),
                                                          NumberRange(min=0)])
    price_at_grant = DecimalField('Price at grant', default=0, validators=[Optional(), NumberRange(min=0)])
    current_price = DecimalField('Current price', default=0, validators=[Optional(), NumberRange(min=0)])
    cliff_months = IntegerField('Cliff (months)', validators=[Optional(), NumberRange(min=0)])
    vesting_schedule_months = IntegerField('Vesting schedule (months)', validators=[Optional(), NumberRange(min=0)])


class PayoutForm(FlaskForm):
    """Form for previewing a variable-pay payout."""
    plan_id = StringField('Plan', validators=[DataRequired(message="Plan is required.")])
    achieved_amount = DecimalField('Achieved amount', validators=[InputRequired(message="Achieved amount is required.")])
    target_amount = DecimalField('Target amount', validators=[Optional()])
    employee_id = StringField('Employee', validators=[Optional()])


class AchievementForm(FlaskForm):
    """Form for recording an achievement for a period."""
    employee_id = StringField('Employee', validators=[DataRequired(message="Employee is required.")])
    plan_id = StringField('Plan', validators=[DataRequired(message="Plan is required.")])
    period = StringField('Period', validators=[
        DataRequired(message="Period is required."),
        Regexp(PERIOD_PATTERN, message="Period must look like 2025-Q1, 2025-H1, 2025-M03 or 2025-FY."),
    ])
    achieved_amount = DecimalField('Achieved amount', validators=[InputRequired(message="Achieved amount is required.")])
    target_amount = DecimalField('Target amount', validators=[Optional()])


class ScenarioForm(FlaskForm):
    """Name and description of a scenario; the rule list is validated by the engine."""
    name = StringField('Name', validators=[DataRequired(message="Name is required.")])
    description = TextAreaField('Description', validators=[Optional()])


class ScenarioApplyForm(FlaskForm):
    """The caller must type the confirmation token to commit a scenario."""
    confirmation = StringField('Confirmation', validators=[DataRequired(message="Confirmation token is required.")])


class AppSettingForm(FlaskForm):
    """Form for editing a single application setting."""
    value = TextAreaField('Value', validators=[DataRequired()])
