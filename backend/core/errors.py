"""
Domain errors raised by the order, claim and ledger workflows.

Each error carries the HTTP status the API layer answers with and a stable
machine-readable code. Routers never catch these; a single exception handler
in api.main turns them into JSON responses.
"""


class WorkflowError(Exception):
    status_code = 400
    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Malformed or out-of-range input that passed schema validation."""

    status_code = 422
    code = "validation_error"


class OutOfStock(ValidationError):
    code = "out_of_stock"


class CoverageExceeded(ValidationError):
    code = "coverage_exceeded"


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class InvalidStateTransition(WorkflowError):
    status_code = 409
    code = "invalid_state_transition"


class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


class InsufficientFunds(WorkflowError):
    status_code = 402
    code = "insufficient_funds"


class NoActivePolicy(WorkflowError):
    status_code = 409
    code = "no_active_policy"


class NoAgentAvailable(WorkflowError):
    status_code = 503
    code = "no_agent_available"


class DuplicateOperation(WorkflowError):
    status_code = 409
    code = "duplicate_operation"
