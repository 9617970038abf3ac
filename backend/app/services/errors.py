from __future__ import annotations


class YouTubeFieldError(Exception):
    pass


class ConfigurationError(YouTubeFieldError):
    pass


class NotAuthorizedError(YouTubeFieldError):
    pass


class AuthExchangeError(YouTubeFieldError):
    pass


class TokenRefreshError(YouTubeFieldError):
    pass


class ProviderRequestError(YouTubeFieldError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider_message: str | None = None,
        raw_response: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider_message = provider_message if provider_message is not None else message
        self.raw_response = raw_response


class ProviderQuotaOrPermissionError(ProviderRequestError):
    pass


class UploadInitError(ProviderRequestError):
    pass


class UploadQuotaOrPermissionError(UploadInitError, ProviderQuotaOrPermissionError):
    pass


class InputValidationError(YouTubeFieldError):
    pass


class EmptyResultError(InputValidationError):
    pass


class ReferenceNotFoundError(InputValidationError):
    pass
