

class EnotempoError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking service.

    Every subclass carries a stable ``code`` and the HTTP status
    the API layer renders it with.
    """

    code = "DOMAIN_ERROR"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def payload(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidToken(EnotempoError):
    """
    Raised when a signed token fails decoding, signature,
    issuer or expiry checks. ``reason`` is for server logs only.
    """

    code = "INVALID_TOKEN"
    status_code = 401
    default_message = "Token non valido o scaduto"

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad-signature"
    BAD_ISSUER = "bad-issuer"
    EXPIRED = "expired"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()


class InvalidInput(EnotempoError):
    """Request data that passed the schema but fails a domain rule."""

    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Dati non validi"


class Unauthenticated(EnotempoError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Sessione non valida. Accedi con FENAM."


class NotFoundOrForbidden(EnotempoError):
    """Raised for missing records and for records owned by someone else alike."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Prenotazione non trovata"


class EventNotFound(EnotempoError):
    code = "EVENT_NOT_FOUND"
    status_code = 404
    default_message = "Evento non trovato."


class Conflict(EnotempoError):
    status_code = 409


class AlreadyConfirmed(Conflict):
    code = "ALREADY_CONFIRMED"
    default_message = "Questa prenotazione risulta già confermata."


class NoCapacity(Conflict):
    code = "NO_CAPACITY"
    default_message = "Posti esauriti per questo evento."


class EmailAlreadyInUse(Conflict):
    code = "EMAIL_ALREADY_IN_USE"
    default_message = "Email già associata a un altro socio."


class ReservationNotPending(Conflict):
    code = "RESERVATION_NOT_PENDING"
    default_message = "Questa prenotazione non è in attesa di pagamento."


class OrderMismatch(Conflict):
    code = "ORDER_MISMATCH"
    default_message = "L'ordine di pagamento non corrisponde a questa prenotazione."


class SoldOutAfterPayment(Conflict):
    """
    Capacity was lost between checkout and capture although the
    provider charged the payer. Operators reconcile these manually.
    """

    code = "SOLD_OUT"
    default_message = (
        "Pagamento ricevuto ma i posti sono esauriti. "
        "Contatta il supporto indicando il codice della transazione."
    )

    def __init__(self, capture_id: str):
        self.capture_id = capture_id
        super().__init__()

    def payload(self) -> dict:
        return {**super().payload(), "captureId": self.capture_id}


class PaymentNotConfigured(EnotempoError):
    code = "PAYMENT_NOT_CONFIGURED"
    status_code = 503
    default_message = "Pagamenti non configurati."

    def __init__(self, missing: list[str]):
        # Names only, never values.
        self.missing = list(missing)
        super().__init__()

    def payload(self) -> dict:
        return {**super().payload(), "missing": self.missing}


class PaymentIncomplete(EnotempoError):
    code = "PAYMENT_INCOMPLETE"
    status_code = 402
    default_message = "Cattura pagamento non completata."


class PaymentProviderUnavailable(EnotempoError):
    """Transport failure or timeout talking to the provider. Safe to retry."""

    code = "PAYMENT_PROVIDER_UNAVAILABLE"
    status_code = 502
    default_message = "Il servizio di pagamento non è raggiungibile, riprova."


class RateLimited(EnotempoError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Troppe richieste, riprova tra poco."


class InvalidStateTransitionError(EnotempoError):
    """
    Raised when an illegal reservation state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)
