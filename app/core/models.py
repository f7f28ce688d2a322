"""Pydantic models for the OFX import pipeline.

This module defines the records that flow through the pipeline (raw statement records,
processed transactions, worker chunk workloads and results), the job lifecycle enums, and
the request/response schemas exposed by the API.
"""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ImportStatus(StrEnum):
    """Lifecycle status of an import job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PENDING_REVIEW = "PENDING_REVIEW"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"

    @property
    def is_terminal(self) -> bool:
        """Terminal jobs accept no further writes."""
        return self in (ImportStatus.FAILED, ImportStatus.COMPLETED)

    @property
    def is_pollable(self) -> bool:
        """Whether a polling client should keep asking for this job's status."""
        return self in (ImportStatus.PENDING, ImportStatus.PROCESSING)

    def can_transition_to(self, target: "ImportStatus") -> bool:
        """Return True when moving from this status to ``target`` is a legal forward step."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.PENDING: frozenset({ImportStatus.PROCESSING, ImportStatus.FAILED}),
    ImportStatus.PROCESSING: frozenset({ImportStatus.PENDING_REVIEW, ImportStatus.FAILED}),
    ImportStatus.PENDING_REVIEW: frozenset({ImportStatus.COMPLETED}),
    ImportStatus.FAILED: frozenset(),
    ImportStatus.COMPLETED: frozenset(),
}


class TransactionType(StrEnum):
    """Direction of money movement for a transaction."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


# --- Pipeline records ---


class RawStatementRecord(BaseModel):
    """One STMTTRN block as found in the statement. Values are untouched strings."""

    trntype: str = "OTHER"
    dtposted: str | None = None
    trnamt: str | None = None
    fitid: str | None = None
    memo: str = ""
    name: str = ""
    checknum: str | None = None


class AccountHeader(BaseModel):
    """Account identification found in the statement response."""

    bank_id: str | None = None
    branch_id: str | None = None
    account_id: str | None = None
    account_type: str | None = None
    currency: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    ledger_balance: str | None = None


class Statement(BaseModel):
    """A parsed statement: account header plus raw records in file order."""

    account: AccountHeader = Field(default_factory=AccountHeader)
    records: list[RawStatementRecord] = Field(default_factory=list)


class Suggestion(BaseModel):
    """A classifier suggestion: the matched rule's value, confidence and rationale."""

    value: str
    confidence: int
    rationale: str


class ProcessedTransaction(BaseModel):
    """A raw record normalized by a worker, ready to be resolved and staged."""

    source_index: int
    title: str
    description: str
    amount: int
    type: TransactionType
    transaction_date: date
    fitid: str | None = None
    trntype: str
    checknum: str | None = None
    memo: str = ""
    name: str = ""
    suggested_category: str | None = None
    category_confidence: int | None = None
    category_rationale: str | None = None
    suggested_payment_method: str | None = None
    payment_method_confidence: int | None = None
    payment_method_rationale: str | None = None

    @property
    def dedup_key(self) -> tuple[str, int, date]:
        """Title, amount and date; combined with the job id this identifies a staged row."""
        return (self.title, self.amount, self.transaction_date)


class ChunkWorkload(BaseModel):
    """A contiguous slice of a job's records sent to one worker."""

    correlation_id: str
    import_id: str
    chunk_index: int
    total_chunks: int
    offset: int
    records: list[RawStatementRecord]


class ChunkResult(BaseModel):
    """What a worker reports back for one chunk."""

    correlation_id: str
    chunk_index: int
    success: bool
    processed_count: int = 0
    errors: list[str] = Field(default_factory=list)
    transactions: list[ProcessedTransaction] = Field(default_factory=list)


class PendingTransactionCreate(BaseModel):
    """A staged row with classifier names resolved to store identifiers."""

    import_job_id: str
    sequence: int
    title: str
    description: str
    amount: int
    type: TransactionType
    transaction_date: date
    fitid: str | None = None
    trntype: str
    checknum: str | None = None
    memo: str = ""
    name: str = ""
    suggested_category_id: str | None = None
    confidence: int | None = None
    suggested_payment_method_id: str | None = None
    payment_method_confidence: int | None = None


# --- API schemas ---


class ImportCreated(BaseModel):
    """Response returned right after an upload is accepted."""

    message: str
    import_id: str
    status: ImportStatus
    total_records: int = 0
    processed_records: int = 0


class ImportJobStatus(BaseModel):
    """Pollable status of an import job."""

    status: ImportStatus
    progress: int
    total_records: int
    processed_records: int
    error_message: str | None = None
    import_date: datetime
    pollable: bool


class BankAccountOut(BaseModel):
    """Bank account referenced by an import."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    bank_code: str | None = None
    agency: str | None = None
    account_number: str | None = None


class NamedRef(BaseModel):
    """Identifier and display name of a category, payment method or tag."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class PendingTransactionOut(BaseModel):
    """A staged transaction as shown to a reviewer."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    import_job_id: str
    sequence: int
    title: str
    description: str
    amount: int
    type: TransactionType
    transaction_date: date
    fitid: str | None = None
    trntype: str
    checknum: str | None = None
    memo: str | None = None
    name: str | None = None
    suggested_category_id: str | None = None
    confidence: int | None = None
    suggested_payment_method_id: str | None = None
    payment_method_confidence: int | None = None
    final_category_id: str | None = None
    suggested_category: NamedRef | None = None
    final_category: NamedRef | None = None
    suggested_payment_method: NamedRef | None = None
    tags: list[NamedRef] = Field(default_factory=list)


class ImportJobOut(BaseModel):
    """An import job with its bank account."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    bank_account_id: str
    file_name: str
    description: str | None = None
    status: ImportStatus
    total_records: int
    processed_records: int
    error_message: str | None = None
    import_date: datetime
    bank_account: BankAccountOut | None = None
    statement_account: AccountHeader | None = None


class ImportJobDetail(ImportJobOut):
    """An import job with its staged transactions."""

    pending_transactions: list[PendingTransactionOut] = Field(default_factory=list)


class UpdateCategoryRequest(BaseModel):
    """Body of a single category override."""

    category_id: str


class CategoryOverride(BaseModel):
    """One entry of a batch category override."""

    id: str
    category_id: str


class BatchCategoryUpdateRequest(BaseModel):
    """Body of a batch category override."""

    transactions: list[CategoryOverride]


class UpdateTagsRequest(BaseModel):
    """Body of a tag override; the given ids replace the current set."""

    tag_ids: list[str] = Field(default_factory=list)


class UpdateResult(BaseModel):
    """Outcome of overriding one pending transaction."""

    id: str
    success: bool
    error: str | None = None


class BatchUpdateSummary(BaseModel):
    """Counts of a batch override."""

    total: int
    success: int
    errors: int


class BatchUpdateResult(BaseModel):
    """Per-row results of a batch override."""

    message: str
    updates: list[UpdateResult]
    summary: BatchUpdateSummary


class ApprovalError(BaseModel):
    """A pending transaction that could not be promoted."""

    pending_transaction_id: str
    error: str


class ApprovalResult(BaseModel):
    """Outcome of approving an import job."""

    message: str
    total: int
    created: int
    ledger_transaction_ids: list[str] = Field(default_factory=list)
    errors: list[ApprovalError] = Field(default_factory=list)


class ImportSummary(BaseModel):
    """Review summary of a job's staged transactions."""

    import_id: str
    status: ImportStatus
    total_transactions: int
    with_final_category: int
    with_suggested_category: int
    high_confidence_suggestions: int
    uncategorized: int
    total_amount: int
    ready_to_approve: bool


class ClassificationRequest(BaseModel):
    """Free text to run through the rule engine."""

    description: str


class ClassificationResponse(BaseModel):
    """Category and payment-method suggestions for a text; either may be absent."""

    category: Suggestion | None = None
    payment_method: Suggestion | None = None


class RuleStats(BaseModel):
    """Sizes of the loaded rule tables."""

    category_rules: int
    payment_method_rules: int
    encoding_fixes: int
    total_rules: int


class ClusterStats(BaseModel):
    """Snapshot of the worker pool."""

    worker_count: int
    backend: str
    is_initialized: bool
    active_jobs: int
    queued_chunks: int


class ImportMetrics(BaseModel):
    """Classification coverage and progress of one import job."""

    import_id: str
    status: ImportStatus
    total_records: int
    processed_records: int
    pending_transactions: int
    categorized_transactions: int
    payment_method_suggestions: int
    progress: float
    categorization_rate: float
    payment_method_rate: float
    import_date: datetime
    cluster: ClusterStats | None = None
