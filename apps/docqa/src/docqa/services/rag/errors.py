from __future__ import annotations


class ExtractionFailed(RuntimeError):
    """The source document could not be turned into text. Never retried."""


class EmbeddingUnavailable(RuntimeError):
    """The embedding endpoint failed after the bounded retry policy."""


class EmbeddingDimensionMismatch(EmbeddingUnavailable):
    """The endpoint returned vectors of an unexpected dimensionality."""


class StorageWriteFailed(RuntimeError):
    """A fragment batch could not be committed; the transaction was rolled back."""


class GenerationUnavailable(RuntimeError):
    """The generative model failed after its own retry and fallback policy."""


class IngestionTimeout(RuntimeError):
    """Document processing exceeded its wall-clock deadline."""
