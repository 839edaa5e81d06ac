from typing import Optional


class NotFoundError(ValueError):
    pass


class InvalidReferenceError(ValueError):
    def __init__(self, message: str, value: object) -> None:
        super().__init__(message)
        self.value = value


class ValidationFailedError(ValueError):
    def __init__(
        self, message: str, errors: Optional[list[dict[str, object]]] = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnauthorizedError(Exception):
    pass
