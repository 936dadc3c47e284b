# chatwire/infra/llm/errors.py
"""
Exception types for the streaming layer.

Configuration and validation problems are raised before any network call.
Transport and provider failures that happen once a request is in flight are
turned into an ErrorEvent by the stream client; they only surface as
exceptions from `StreamingChatClient.collect()`.
"""


class LLMError(Exception):
    """Base class for chatwire LLM failures."""


class ConfigurationError(LLMError):
    """Unsupported provider, missing endpoint, or an unusable header value."""


class ValidationError(LLMError):
    """Empty message list, invalid role, or blank message content."""


class TransportError(LLMError):
    """Connection failure or non-2xx response."""


class MetadataError(TransportError):
    """Model metadata lookup failed or returned no context size."""


class DecodeError(LLMError):
    """A single event payload could not be decoded; the stream continues."""


class ProviderError(LLMError):
    """The provider reported an error inside the event stream."""
