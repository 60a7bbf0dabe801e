class BookingError(Exception):
    """Базовая ошибка записи, которая возвращается вызывающему с HTTP-статусом."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(BookingError):
    status_code = 404


class BookingValidationError(BookingError):
    status_code = 400


class ConflictError(BookingError):
    """Время занято или запись уже в конечном статусе.

    Клиенту нужно заново запросить слоты и выбрать другое время.
    """

    status_code = 409


class ForbiddenError(BookingError):
    status_code = 403
