"""Custom exception hierarchy for the data room query pipeline."""


class DataroomRAGError(Exception):
    """Base exception for all pipeline errors."""


class InvalidQuery(DataroomRAGError):
    """Malformed or empty question, rejected before any deadline starts."""


class AnalysisTimeout(DataroomRAGError):
    """Query analysis exceeded its time budget."""


class CancellationError(DataroomRAGError):
    """The caller aborted the request."""


class Aborted(CancellationError):
    """Cancellation observed before or during query analysis."""


class AccessError(DataroomRAGError):
    """The asker is not entitled to any indexed document in the requested scope."""


class RetrievalMiss(DataroomRAGError):
    """Retrieval produced no usable context."""


class RetrievalError(DataroomRAGError):
    """Error during lexical or semantic search."""


class EmbeddingError(RetrievalError):
    """Error generating a query embedding."""


class GenerationError(DataroomRAGError):
    """Error calling the generation provider."""


class OrchestratorError(DataroomRAGError):
    """Unexpected failure inside retrieval/generation."""


class PipelineTimeout(DataroomRAGError):
    """The end-to-end request deadline expired."""


class SessionStoreError(DataroomRAGError):
    """Error reading or writing chat sessions."""


class ConfigurationError(DataroomRAGError):
    """Error in system configuration."""
