"""Error taxonomy shared by normalizer, renderer, adapters and orchestrator."""


class NotificationError(Exception):
    """Base class for notification engine errors."""


class InvalidDestination(NotificationError):
    """Phone number or email address cannot be addressed by a channel."""


class MissingField(NotificationError):
    """Template payload lacks fields the template requires."""

    def __init__(self, kind: str, fields: list[str]) -> None:
        self.kind = kind
        self.fields = fields
        super().__init__(f"missing payload fields for {kind}: {', '.join(fields)}")


class DeliveryError(NotificationError):
    """Provider-side failure while sending one message."""

    error_type = "DELIVERY_ERROR"
    retryable = False

    def __init__(self, reason: str, code: str | int | None = None) -> None:
        self.reason = reason
        self.code = code
        super().__init__(reason)


class TransientDeliveryError(DeliveryError):
    """Network, timeout or provider overload; may succeed when retried."""

    error_type = "TRANSIENT"
    retryable = True


class TerminalDeliveryError(DeliveryError):
    """Provider rejected the message; retrying on the same channel is pointless."""

    error_type = "TERMINAL"


class PersistenceUnavailable(TransientDeliveryError):
    """History or quota store could not be read or written."""

    error_type = "PERSISTENCE"


class AllChannelsExhausted(NotificationError):
    """No channel in the preference list delivered the notification."""

    def __init__(self, dedup_key: str, last_error: str | None) -> None:
        self.dedup_key = dedup_key
        self.last_error = last_error
        super().__init__(f"all channels exhausted for {dedup_key}: {last_error or 'no channel attempted'}")


class AppointmentStoreUnavailable(NotificationError):
    """The appointment service could not list or update appointments."""
