class AIEnrichmentError(Exception):
    """Base class for AI enrichment errors."""


class AITokenLimitError(AIEnrichmentError):
    """Raised when LLM token limits are exceeded."""


class AITimeoutError(AIEnrichmentError):
    """Raised when the AI provider times out."""


class AIProviderError(AIEnrichmentError):
    """Raised for upstream provider failures."""


class AIInputValidationError(AIEnrichmentError):
    """Raised when input data is malformed."""


class AIResponseParseError(AIEnrichmentError):
    """Raised when the model reply cannot be turned into an enrichment array."""
