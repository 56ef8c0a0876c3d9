"""Error types shared across the paperlm pipeline."""


class PaperLMError(Exception):
    """Base class for paperlm errors."""


class ConfigurationError(PaperLMError):
    """Deployment misconfiguration (e.g. embedding dimension mismatch).

    Never degraded; aborts the operation that hit it.
    """


class TransientProviderError(PaperLMError):
    """A provider (embedding, LLM, vector database) failed or is unavailable.

    Callers catch this locally and fall back to a degraded result.
    """
