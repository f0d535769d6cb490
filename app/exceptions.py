"""
Domain errors.

Transport errors (signature, malformed payload) are rejected at the webhook
boundary. Collaborator errors are caught per call by the orchestrator.
`RetryableError` marks transient failures a caller may retry.
"""


class CSAutomationError(Exception):
    """Base class for all domain errors."""


class RetryableError(CSAutomationError):
    """Transient failure (timeout, upstream 5xx); safe to retry."""


class SignatureValidationError(CSAutomationError):
    """Webhook signature did not match the channel secret."""


class WebhookParseError(CSAutomationError):
    """Webhook body could not be decoded into the platform's payload shape."""


class ChannelNotSupportedError(CSAutomationError):
    """No adapter is registered for the requested channel."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"Channel not supported: {channel}")


class CredentialsNotFoundError(CSAutomationError):
    """Neither the credentials store nor the environment has credentials."""

    def __init__(self, channel: str, account_id: str | None = None):
        self.channel = channel
        self.account_id = account_id
        super().__init__(
            f"Channel credentials not found: {channel}/{account_id or 'default'}"
        )


class RetrievalError(CSAutomationError):
    """Both retrieval sub-searches failed."""


class GenerationError(CSAutomationError):
    """The LLM call failed."""


class GenerationTimeoutError(GenerationError, RetryableError):
    """The LLM call exceeded its timeout."""


class TranslationError(CSAutomationError):
    """The translation provider returned an error."""


class TranslationTimeoutError(TranslationError, RetryableError):
    """The translation provider did not answer within the timeout."""


class PlatformAuthError(CSAutomationError):
    """The platform refused to issue an access token for the account."""
