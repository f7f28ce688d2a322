"""Domain exceptions raised by the import pipeline and mapped to HTTP errors by the API layer."""


class ImportPipelineError(Exception):
    """Base class for all import pipeline errors."""


class StatementFormatError(ImportPipelineError):
    """The uploaded statement cannot be decoded or lacks its expected structure. Fatal for the job."""


class NotFoundError(ImportPipelineError):
    """A referenced job, pending transaction, category, tag or bank account does not exist."""


class ValidationError(ImportPipelineError):
    """Caller supplied input that the review or upload operations cannot accept."""


class InvalidStateError(ImportPipelineError):
    """An import job was asked to make an illegal status transition or was written after finishing."""


class WorkerPoolError(ImportPipelineError):
    """A worker faulted; every in-flight job on the pool is rejected with this error."""
