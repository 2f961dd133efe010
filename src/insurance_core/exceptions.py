"""Error taxonomy for lifecycle operations.

Every error raised by the engine derives from LifecycleError and carries a
stable ``code`` that outer layers (CLI, tool server) report verbatim.
Only ConcurrentModification is safe to retry.
"""


class LifecycleError(Exception):
    """Base class for all engine errors."""

    code = "lifecycle_error"

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.context}


class ValidationError(LifecycleError):
    """Malformed or out-of-range input, rejected before any write."""

    code = "validation_error"


class InvalidFrequency(ValidationError):
    code = "invalid_frequency"


class InvariantViolation(LifecycleError):
    """Input is well-formed but would break an entity invariant."""

    code = "invariant_violation"


class AmountExceedsCoverage(InvariantViolation):
    code = "amount_exceeds_coverage"


class IncidentOutsideCoverage(InvariantViolation):
    code = "incident_outside_coverage"


class BeneficiaryPercentageError(InvariantViolation):
    code = "beneficiary_percentage"


class CoverageLocked(InvariantViolation):
    code = "coverage_locked"


class ClaimsExist(InvariantViolation):
    code = "claims_exist"


class RefundExceedsAmount(InvariantViolation):
    code = "refund_exceeds_amount"


class StateTransitionError(LifecycleError):
    """Target status unreachable from the current one, or terminal entity."""

    code = "state_transition_error"


class InvalidTransition(StateTransitionError):
    code = "invalid_transition"


class PolicyNotActive(StateTransitionError):
    code = "policy_not_active"


class NotCompleted(StateTransitionError):
    code = "not_completed"


class AuthorizationError(LifecycleError):
    """Actor lacks the role or ownership required for the operation."""

    code = "unauthorized"


# Name used in the operation contracts
Unauthorized = AuthorizationError


class ConcurrentModification(LifecycleError):
    """Entity changed between read and write; the caller may retry."""

    code = "concurrent_modification"


class NotFound(LifecycleError):
    code = "not_found"


class DuplicateNumber(ConcurrentModification):
    """A generated business number is already taken; a retry draws a new one."""

    code = "duplicate_number"
