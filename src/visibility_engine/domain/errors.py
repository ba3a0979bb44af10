"""Error taxonomy for the job queue, authority registry and scoring engine."""


class VisibilityEngineError(Exception):
    """Base class for all application errors."""


class TransientError(VisibilityEngineError):
    """A handler failure worth retrying (timeouts, 5xx, rate limits).

    Any exception raised by a handler that is not a PermanentError is
    treated as transient, so raising this explicitly is optional.
    """


class PermanentError(VisibilityEngineError):
    """A handler failure that will never succeed on retry.

    Jobs failing with this error skip the remaining retry budget and go
    straight to the dead letter state.
    """


class ExhaustedError(VisibilityEngineError):
    """A job ran out of retries and was dead-lettered."""

    def __init__(self, job_type: str, attempts: int, last_error: str) -> None:
        self.job_type = job_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Job {job_type} failed after {attempts} attempts: {last_error}")


class MissingConfigError(VisibilityEngineError):
    """No scoring config matches the requested version (or none is active)."""


class MissingAuthorityError(VisibilityEngineError):
    """No authority record exists for an engine."""


class ConcurrencyError(VisibilityEngineError):
    """An optimistic update kept losing to concurrent writers."""


class InvalidStateError(VisibilityEngineError):
    """A record is not in the state an operation requires."""


class JobNotFoundError(VisibilityEngineError):
    """No job exists with the given id."""


class ConfigurationError(PermanentError):
    """Our side could not make the call: no gateway URL, bad credentials, a rejected request.

    Says nothing about the health of the engine being queried, so it is
    never recorded as an engine failure.
    """
