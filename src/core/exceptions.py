"""
Custom exception types for mixplan.

Every exception carries a machine-readable code so callers can
handle specific failure modes programmatically.
"""


class MixPlanError(Exception):
    """Base exception for all mixplan errors."""

    def __init__(self, message: str, code: str = "MIXPLAN_ERROR"):
        self.code = code
        super().__init__(message)


class InvalidInputError(MixPlanError):
    """Raised when priors, assumptions or call arguments are malformed."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, code="INVALID_INPUT")


class InfeasibleConstraintsError(MixPlanError):
    """Raised when no allocation satisfies the per-channel min/max bounds."""

    def __init__(self, message: str, reason: str = ""):
        self.reason = reason
        super().__init__(message, code="INFEASIBLE_CONSTRAINTS")


class InvalidAssumptionsError(MixPlanError):
    """Raised when the assumptions cannot support the selected goal."""

    def __init__(self, message: str, goal: str = ""):
        self.goal = goal
        super().__init__(message, code="INVALID_ASSUMPTIONS")


class EmptyInputError(MixPlanError):
    """Raised when the ensemble combiner receives no results."""

    def __init__(self, message: str = "Cannot combine an empty list of algorithm results"):
        super().__init__(message, code="EMPTY_INPUT")
