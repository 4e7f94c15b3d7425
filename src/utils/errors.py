"""Exception hierarchy for docuweave.

Every error carries a message and, when a collaborator is to blame, the
``provider_name`` of that collaborator ("openai", "sqlite", "memory", ...).

    DocuweaveError
    +-- ValidationError       document rejected before any job exists
    +-- ProviderError         embedding provider call failed
    |   +-- RateLimitError
    +-- PersistenceError      knowledge store read or write failed
    +-- PipelineError         orchestration failure
    |   +-- JobCancelledError
    +-- ConfigurationError    invalid settings or pipeline config

How each kind travels:

* ``ValidationError`` is raised straight back to the caller of
  ``ingest_document``; no job record is written.
* ``ProviderError`` is retried by the embedder and then recorded against a
  single chunk, so one bad chunk never sinks a batch.
* ``PersistenceError`` and ``PipelineError`` fail the job of the document
  being processed and leave the rest of a batch alone.

Chunks dropped by the quality validator are statistics, not errors.
"""


class DocuweaveError(Exception):
    """Base class for docuweave errors.

    Subclasses only override ``default_message``.  ``str(err)`` renders as
    ``[provider] message`` when a provider is known, which keeps log lines
    greppable by collaborator.
    """

    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, provider_name: str | None = None) -> None:
        self._message = message or self.default_message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ValidationError(DocuweaveError):
    """The submitted document is empty, oversized, unreadable or conflicting."""

    default_message = "Document validation failed"


class ProviderError(DocuweaveError):
    """An embedding call failed or produced an unusable vector."""

    default_message = "Embedding provider call failed"


class RateLimitError(ProviderError):
    default_message = "Rate limit exceeded"


class PersistenceError(DocuweaveError):
    """The knowledge store could not complete a read or write."""

    default_message = "Knowledge store operation failed"


class PipelineError(DocuweaveError):
    default_message = "Pipeline orchestration failed"


class JobCancelledError(PipelineError):
    """Raised at the next checkpoint after ``cancel_job`` was called."""

    default_message = "Ingestion job was cancelled"


class ConfigurationError(DocuweaveError):
    default_message = "Invalid or missing configuration"
