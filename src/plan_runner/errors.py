# errors.py
# Exception hierarchy for the plan runner.
#
# Only plan-shape errors abort a run. Step-level faults are captured as
# ExecutionResult failures and never raised past the executor.


class PlanRunnerError(Exception):
    """Base class for every error raised by this package."""


class PlanParseError(PlanRunnerError):
    """Raised when planner output carries JSON that cannot be parsed."""


class PlanValidationError(PlanRunnerError):
    """Raised when a plan is malformed. Nothing is executed."""


class EmptyPlanError(PlanValidationError):
    """Raised when a plan has no steps. Callers should ask for clarification."""


class CyclicDependencyError(PlanValidationError):
    """Raised when dependsOn edges form a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class AdapterNotFoundError(PlanRunnerError):
    """Raised by an adapter that has no handler for a (server, operation) pair."""


class SynthesisError(PlanRunnerError):
    """Raised when the synthesis collaborator cannot produce a summary."""
