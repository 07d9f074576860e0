# ==============================================================================
# compsense/calculator/errors.py
# ------------------------------------------------------------------------------
# Typed failure conditions raised by the computation engine.
# Every condition carries a machine-readable code; turning it into a
# user-facing message is the caller's job.
# ==============================================================================


class EngineError(Exception):
    """Base class for every condition the engine raises."""
    code = 'ENGINE_ERROR'
    status_code = 500

    def __init__(self, message, details=None, code=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_dict(self):
        return {'error': self.code, 'message': self.message, 'details': self.details}


# --- Validation errors: malformed input, rejected before computing ---

class ValidationError(EngineError):
    code = 'VALIDATION_ERROR'
    status_code = 400


class InvalidGrant(ValidationError):
    code = 'INVALID_GRANT'


class InvalidTarget(ValidationError):
    code = 'INVALID_TARGET'


class NoEffectiveBand(ValidationError):
    code = 'NO_EFFECTIVE_BAND'

    def __init__(self, band_code, as_of):
        super().__init__(
            f"No salary band '{band_code}' is effective on {as_of.isoformat()}",
            details={'band': band_code, 'as_of': as_of.isoformat()},
        )
        self.band_code = band_code
        self.as_of = as_of


class InvalidRule(ValidationError):
    code = 'INVALID_RULE'


class PolicyError(ValidationError):
    code = 'INVALID_POLICY'


class IneligibleEmployee(ValidationError):
    code = 'INELIGIBLE'


class RecordNotFound(EngineError):
    code = 'NOT_FOUND'
    status_code = 404

    def __init__(self, kind, record_id):
        super().__init__(f"{kind} '{record_id}' does not exist", details={'kind': kind, 'id': record_id})


# --- Data-consistency errors: the operation would corrupt state ---

class ConsistencyError(EngineError):
    code = 'CONSISTENCY_ERROR'
    status_code = 409


class ScenarioStateConflict(ConsistencyError):
    code = 'SCENARIO_STATE_CONFLICT'


class VestingOverflow(ConsistencyError):
    code = 'VESTING_OVERFLOW'
