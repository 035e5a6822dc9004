from volbot.api.http_client import (
    ApiBadResponseError,
    ApiClientError,
    ApiRateLimitError,
    ApiTimeoutError,
    AsyncApiClient,
)
