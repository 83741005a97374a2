class CategorizerError(Exception):
    """Base class for errors raised inside the categorizer."""


class BackendError(CategorizerError):
    """The backing store could not serve a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClassifierError(CategorizerError):
    """The remote classifier failed to produce a usable answer."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class ClassifierTimeout(ClassifierError):
    pass


class MalformedResponseError(ClassifierError):
    pass
