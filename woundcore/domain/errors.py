"""
Exception hierarchy for the wound analytics core.

Only invariant violations propagate to callers. Input problems are returned as
values (``Result`` or ``insufficient_data`` outcomes) and business outcomes such as
non-eligibility are ordinary result fields.
"""


class InvariantViolation(RuntimeError):
    """Programming error that would corrupt the coverage/clinical separation."""

    def __init__(self, code: str, detail: str) -> None:
        super().__init__(f"{code}: {detail}")
        self.code = code
        self.detail = detail


class PhaseSeparationViolation(InvariantViolation):
    """Non-area data (or a mismatched baseline) reached the phase-compliance engine."""


class FatigueBypassViolation(InvariantViolation):
    """Fatigue-suppression bypass requested for an alert without a safety-critical tier."""


class UnsupportedUnitError(ValueError):
    """Unit string could not be mapped to a known conversion, even by fallback."""

    def __init__(self, unit: str, kind: str) -> None:
        super().__init__(f"Unsupported unit '{unit}' for {kind} measurement")
        self.unit = unit
        self.kind = kind


class InvalidTransitionError(ValueError):
    """Clinical review state transition not permitted from the current state."""
