from __future__ import annotations


class ExternalAPIError(RuntimeError):
    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class ImageReadError(ValueError):
    def __init__(self, message: str = "Could not read image") -> None:
        super().__init__(message)


class MenuParseError(ValueError):
    """The model reply held no usable menu object; ``raw_text`` keeps the reply."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class MenuEditError(ValueError):
    pass


class ItemNotFoundError(LookupError):
    def __init__(self, item_ref: int | str) -> None:
        super().__init__(f"Menu item {item_ref!r} not found")
        self.item_ref = item_ref


class ExtractionInProgressError(RuntimeError):
    def __init__(self, key: str) -> None:
        super().__init__("An extraction is already in progress")
        self.key = key


class PersistenceError(RuntimeError):
    pass


class AuthError(RuntimeError):
    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code
