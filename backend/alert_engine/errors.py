"""Error taxonomy for template rendering, provider selection and SMS delivery.

Every error carries a ``kind`` string that is persisted as
``DeliveryRecord.error_kind``. ``run_scoped`` errors abort the remainder of a
schedule run; all others only affect the entity being processed.
"""


class AlertEngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine_error"
    run_scoped = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class TemplateValidationError(AlertEngineError):
    """Raised at save time when a template body uses unrecognized placeholders."""

    kind = "template_invalid"

    def __init__(self, category: str, unknown: list[str]) -> None:
        super().__init__(f"Unknown placeholders for {category}: {', '.join(unknown)}")
        self.category = category
        self.unknown = unknown


class TemplateInUseError(AlertEngineError):
    """Raised when a template change would break schedules that reference it."""

    kind = "template_in_use"

    def __init__(self, category: str, schedule_names: list[str]) -> None:
        super().__init__(f"Category {category} is incompatible with schedules: {', '.join(schedule_names)}")
        self.category = category
        self.schedule_names = schedule_names


class TemplateRenderError(AlertEngineError):
    """Raised when the render context lacks a value for a placeholder in the body."""

    kind = "template_render"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing placeholder values: {', '.join(missing)}")
        self.missing = missing


class NoEligibleProviderError(AlertEngineError):
    """No active provider account has quota left."""

    kind = "no_eligible_provider"
    run_scoped = True


class DeliveryError(AlertEngineError):
    """Base class for failures raised by the delivery client."""

    kind = "delivery_error"


class AuthenticationError(DeliveryError):
    """Provider rejected the credentials. Affects every send with this configuration."""

    kind = "authentication"
    run_scoped = True


class InvalidRecipientError(DeliveryError):
    kind = "invalid_recipient"


class CountryNotEnabledError(DeliveryError):
    kind = "country_not_enabled"

    def __init__(self, recipient: str, country: str | None = None) -> None:
        label = country or "unknown country"
        super().__init__(f"{recipient}: SMS delivery to {label} is not enabled")
        self.recipient = recipient
        self.country = country


class TestModeRestrictionError(DeliveryError):
    kind = "test_mode_restriction"
    __test__ = False  # keep pytest from collecting this as a test class


class QuotaExceededError(DeliveryError):
    kind = "quota_exceeded"


class ProviderUnavailableError(DeliveryError):
    """Transient failure: timeout, transport error or 5xx. Retried once."""

    kind = "provider_unavailable"


class ProviderRejectedError(DeliveryError):
    """Provider refused the message for a reason outside the known categories."""

    kind = "provider_rejected"


class CandidateSourceError(AlertEngineError):
    """The external record store could not supply entity snapshots."""

    kind = "candidate_source"
    run_scoped = True


class ScheduleNotFoundError(AlertEngineError):
    kind = "schedule_not_found"


class ScheduleValidationError(AlertEngineError):
    """Schedule definition is inconsistent (missing or incompatible template, bad bounds)."""

    kind = "schedule_invalid"


class EntityNotFoundError(AlertEngineError):
    """The record store has no candidate with this id under the schedule's type and station."""

    kind = "entity_not_found"
