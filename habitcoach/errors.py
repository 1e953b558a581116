from __future__ import annotations


class ProgressionError(Exception):
    """Base for every error the progression flow raises on purpose."""
    code = "progression_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.context}


class AlreadyDecided(ProgressionError):
    code = "already_decided"
    status_code = 409


class InvalidOverride(ProgressionError):
    code = "invalid_override"
    status_code = 422


class InvalidDecision(ProgressionError):
    code = "invalid_decision"
    status_code = 400


class NoPendingAssessment(ProgressionError):
    code = "no_pending_assessment"
    status_code = 404


class PlanNotFound(ProgressionError):
    code = "plan_not_found"
    status_code = 404


class PlanAlreadyStarted(ProgressionError):
    code = "plan_already_started"
    status_code = 409


class ProgrammeComplete(ProgressionError):
    code = "programme_complete"
    status_code = 409


class TemplateMissing(ProgressionError):
    """No template for a phase/week pair; a configuration fault, never defaulted."""
    code = "template_missing"
    status_code = 500


class PastDayLocked(ProgressionError):
    code = "past_day_locked"
    status_code = 409


class PersistenceFailure(ProgressionError):
    """The decision could neither be committed nor handed to the write queue."""
    code = "persistence_failure"
    status_code = 503


class JobNotFound(ProgressionError):
    code = "job_not_found"
    status_code = 404
