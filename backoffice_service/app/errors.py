"""Ошибки ядра аренды.

Каждая ошибка несёт ``kind`` и ``reason``, чтобы вызывающая сторона могла
показать пользователю конкретное сообщение, а не общую ошибку.
"""


class Reason:
    INVALID_INTERVAL = "invalid_interval"
    INTERVAL_CONFLICT = "interval_conflict"
    ODOMETER_BELOW_CURRENT = "odometer_below_current"
    ODOMETER_NOT_INCREASED = "odometer_not_increased"
    SIGNATURE_REQUIRED = "signature_required"
    VEHICLE_UNAVAILABLE = "vehicle_unavailable"
    VEHICLE_IN_MAINTENANCE = "vehicle_in_maintenance"
    CUSTOMER_REQUIRED = "customer_required"
    TOKEN_ALREADY_ISSUED = "token_already_issued"
    RESERVATION_NOT_COMPLETED = "reservation_not_completed"
    INVOICE_EXISTS = "invoice_exists"
    LICENSE_IMAGE_REQUIRED = "license_image_required"
    INVALID_PAYMENT_METHOD = "invalid_payment_method"


class RentalError(Exception):
    kind = "rental_error"

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.kind, "reason": self.reason, "message": self.message}


class InvalidInterval(RentalError):
    kind = "invalid_interval"

    def __init__(self, message: str = "End time must be after start time"):
        super().__init__(message, Reason.INVALID_INTERVAL)


class PreconditionFailed(RentalError):
    kind = "precondition_failed"

    def __init__(self, reason: str, message: str = None):
        super().__init__(message or reason.replace("_", " ").capitalize(), reason)


class IntervalConflict(PreconditionFailed):
    kind = "interval_conflict"

    def __init__(self, vehicle_id: int, conflicting_ids=()):
        super().__init__(
            Reason.INTERVAL_CONFLICT,
            f"Vehicle {vehicle_id} is already booked for the selected time",
        )
        self.vehicle_id = vehicle_id
        self.conflicting_ids = list(conflicting_ids)


class InvalidTransition(RentalError):
    kind = "invalid_transition"

    def __init__(self, event: str, status: str):
        super().__init__(f"Cannot {event} a reservation in status '{status}'", "invalid_transition")
        self.event = event
        self.status = status


class NotFound(RentalError):
    kind = "not_found"

    def __init__(self, message: str):
        super().__init__(message, "not_found")


class UpstreamFailure(RentalError):
    """Сбой внешнего сервиса (БД, S3, генератор договоров). Можно повторить."""

    kind = "upstream_failure"

    def __init__(self, message: str):
        super().__init__(message, "upstream_failure")
