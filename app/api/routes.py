"""FastAPI endpoints for the OFX import API.

This module defines the routes for uploading statements, polling import jobs, reviewing and
approving staged transactions, trying the classification engine, and health checks. Domain
errors raised by the services are translated to HTTP errors here.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile

from app.api.dependencies import (
    get_cluster,
    get_engine,
    get_file_service,
    get_import_service,
    get_review_service,
)
from app.classification.engine import ClassificationEngine
from app.core.exceptions import ImportPipelineError, InvalidStateError, NotFoundError, ValidationError
from app.core.models import (
    ApprovalResult,
    BatchCategoryUpdateRequest,
    BatchUpdateResult,
    ClassificationRequest,
    ClassificationResponse,
    ClusterStats,
    ImportCreated,
    ImportJobDetail,
    ImportJobOut,
    ImportJobStatus,
    ImportMetrics,
    ImportSummary,
    PendingTransactionOut,
    RuleStats,
    UpdateCategoryRequest,
    UpdateTagsRequest,
)
from app.core.utils import get_logger
from app.services.file_service import FileService
from app.services.import_service import ImportService
from app.services.review_service import ReviewService
from app.workers.cluster_manager import ClusterManager

router = APIRouter()
logger = get_logger("ofx-import.api")

IMPORT_ID_EXAMPLE = "123e4567-e89b-12d3-a456-426614174000"
NOT_FOUND_RESPONSE = {
    "description": "Import or pending transaction not found.",
    "content": {"application/json": {"example": {"detail": f"OFX import not found: {IMPORT_ID_EXAMPLE}"}}},
}
CONFLICT_RESPONSE = {
    "description": "The import is in a state that does not allow this operation.",
    "content": {"application/json": {"example": {"detail": "Import is COMPLETED and can no longer be edited"}}},
}


def _http_error(exc: ImportPipelineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(404, str(exc))
    if isinstance(exc, InvalidStateError):
        return HTTPException(409, str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(400, str(exc))
    return HTTPException(500, "Internal error")


# --- Imports ---


@router.post(
    "/ofx-import/upload",
    status_code=202,
    response_model=ImportCreated,
    tags=["ofx-import"],
    summary="Upload an OFX statement and start an import job",
    description=(
        "Upload an OFX bank statement for a bank account. "
        "The server creates an import job and processes the file in the background: parsing, "
        "normalization and classification on the worker pool, then staging of the transactions for review.\n\n"
        "**Request:**\n"
        "- Content-Type: multipart/form-data\n"
        "- Form fields: `file` (OFX file), `bank_account_id`, optional `description`\n\n"
        "**Response:**\n"
        "- 202 Accepted: the created job, in status `PENDING`.\n"
        "- 400 Bad Request: missing file or not an OFX file.\n"
        "- 404 Not Found: unknown bank account."
    ),
    response_description="Import accepted. Poll its status until it is no longer pollable.",
    responses={
        202: {
            "description": "Import accepted.",
            "content": {
                "application/json": {
                    "example": {
                        "message": "OFX import started",
                        "import_id": IMPORT_ID_EXAMPLE,
                        "status": "PENDING",
                        "total_records": 0,
                        "processed_records": 0,
                    }
                }
            },
        },
        400: {
            "description": "Only OFX files accepted.",
            "content": {"application/json": {"example": {"detail": "Only OFX files accepted"}}},
        },
        404: {"description": "Bank account not found."},
    },
)
async def upload_ofx(
    background_tasks: BackgroundTasks,
    file: UploadFile | None = File(None),
    bank_account_id: str = Form(...),
    description: str | None = Form(None),
    service: ImportService = Depends(get_import_service),
    files: FileService = Depends(get_file_service),
) -> ImportCreated:
    """Upload an OFX file and start an import job."""
    filename = file.filename if file is not None else None
    logger.info(f"Received upload request: filename={filename}, bank_account_id={bank_account_id}")
    try:
        files.validate_filename(filename)
        content = await files.read_upload(file)
        created = service.create_import(bank_account_id, filename, description)
    except ImportPipelineError as exc:
        logger.warning(f"Rejected upload {filename}: {exc}")
        raise _http_error(exc) from exc
    background_tasks.add_task(service.process_import, created.import_id, content)
    logger.info(f"Background import started: import_id={created.import_id}")
    return created


@router.get(
    "/ofx-import",
    response_model=list[ImportJobOut],
    tags=["ofx-import"],
    summary="List import jobs",
    description="Return every import job with its bank account, newest first.",
)
def list_imports(service: ImportService = Depends(get_import_service)) -> list[ImportJobOut]:
    """List import jobs."""
    return service.list_imports()


@router.get(
    "/ofx-import/cluster/stats",
    response_model=ClusterStats,
    tags=["ofx-import"],
    summary="Worker pool statistics",
    description="Report the pool size, backend, whether workers are running, in-flight jobs and queued chunks.",
)
def cluster_stats(cluster: ClusterManager = Depends(get_cluster)) -> ClusterStats:
    """Return worker pool statistics."""
    return cluster.stats()


@router.get(
    "/ofx-import/{import_id}",
    response_model=ImportJobDetail,
    tags=["ofx-import"],
    summary="Get an import job with its staged transactions",
    description="Return the job, its bank account and its pending transactions in original file order.",
    responses={404: NOT_FOUND_RESPONSE},
)
def get_import(import_id: str, service: ImportService = Depends(get_import_service)) -> ImportJobDetail:
    """Get an import job with its pending transactions."""
    try:
        return service.get_import(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/ofx-import/{import_id}/status",
    response_model=ImportJobStatus,
    tags=["ofx-import"],
    summary="Get import job status",
    description=(
        "Check the status of an import job.\n\n"
        "**Response:**\n"
        "- `status`: PENDING, PROCESSING, PENDING_REVIEW, FAILED or COMPLETED\n"
        "- `progress`: processed share of the records, 0-100\n"
        "- `pollable`: true while the job is PENDING or PROCESSING"
    ),
    response_description="Job status and progress.",
    responses={
        200: {
            "description": "Job found.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "PENDING_REVIEW",
                        "progress": 67,
                        "total_records": 3,
                        "processed_records": 2,
                        "error_message": None,
                        "import_date": "2025-05-18T10:30:49Z",
                        "pollable": False,
                    }
                }
            },
        },
        404: NOT_FOUND_RESPONSE,
    },
)
def get_import_status(import_id: str, service: ImportService = Depends(get_import_service)) -> ImportJobStatus:
    """Get the status of an import job."""
    try:
        return service.get_status(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/ofx-import/{import_id}/metrics",
    response_model=ImportMetrics,
    tags=["ofx-import"],
    summary="Get import metrics",
    description="Report progress, classification coverage of the staged rows and a snapshot of the worker pool.",
    responses={404: NOT_FOUND_RESPONSE},
)
def get_import_metrics(import_id: str, service: ImportService = Depends(get_import_service)) -> ImportMetrics:
    """Get metrics for an import job."""
    try:
        return service.get_metrics(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.delete(
    "/ofx-import/{import_id}",
    status_code=204,
    tags=["ofx-import"],
    summary="Delete an import job",
    description="Delete an import job together with its staged transactions. Jobs still processing cannot be deleted.",
    responses={404: NOT_FOUND_RESPONSE, 409: CONFLICT_RESPONSE},
)
def delete_import(import_id: str, service: ImportService = Depends(get_import_service)) -> None:
    """Delete an import job."""
    try:
        service.delete_import(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


# --- Review ---


@router.get(
    "/ofx-pending-transactions/import/{import_id}",
    response_model=list[PendingTransactionOut],
    tags=["ofx-pending-transactions"],
    summary="List the staged transactions of an import",
    responses={404: NOT_FOUND_RESPONSE},
)
def list_pending(import_id: str, review: ReviewService = Depends(get_review_service)) -> list[PendingTransactionOut]:
    """List pending transactions of an import in file order."""
    try:
        return review.list_for_import(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/ofx-pending-transactions/import/{import_id}/summary",
    response_model=ImportSummary,
    tags=["ofx-pending-transactions"],
    summary="Review summary of an import",
    description=(
        "Count staged rows with a manual category, with a suggestion, with a suggestion at or above the "
        "promotion threshold, and without any usable category. `ready_to_approve` is true when nothing is "
        "left uncategorized."
    ),
    responses={404: NOT_FOUND_RESPONSE},
)
def import_summary(import_id: str, review: ReviewService = Depends(get_review_service)) -> ImportSummary:
    """Summarize the review state of an import."""
    try:
        return review.summary(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/ofx-pending-transactions/import/{import_id}/approve",
    response_model=ApprovalResult,
    tags=["ofx-pending-transactions"],
    summary="Approve an import",
    description=(
        "Create one ledger transaction per staged row and complete the import. A row uses its manual "
        "category, else its suggestion when the confidence reaches the promotion threshold, else no category. "
        "Row failures are reported individually; staged rows are only removed when every row succeeded."
    ),
    responses={
        200: {
            "description": "Import approved.",
            "content": {
                "application/json": {
                    "example": {
                        "message": "Import approved",
                        "total": 2,
                        "created": 2,
                        "ledger_transaction_ids": ["...", "..."],
                        "errors": [],
                    }
                }
            },
        },
        400: {"description": "The import has no pending transactions."},
        404: NOT_FOUND_RESPONSE,
        409: CONFLICT_RESPONSE,
    },
)
def approve_import(import_id: str, review: ReviewService = Depends(get_review_service)) -> ApprovalResult:
    """Approve an import and promote its transactions."""
    try:
        return review.approve(import_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.put(
    "/ofx-pending-transactions/batch-update-categories",
    response_model=BatchUpdateResult,
    tags=["ofx-pending-transactions"],
    summary="Override the category of many staged transactions",
    description="Apply `{id, category_id}` overrides one by one and report the outcome of each row.",
)
def batch_update_categories(
    body: BatchCategoryUpdateRequest, review: ReviewService = Depends(get_review_service)
) -> BatchUpdateResult:
    """Apply a batch of category overrides."""
    return review.batch_update_categories(body.transactions)


@router.get(
    "/ofx-pending-transactions/{pending_id}",
    response_model=PendingTransactionOut,
    tags=["ofx-pending-transactions"],
    summary="Get a staged transaction",
    responses={404: NOT_FOUND_RESPONSE},
)
def get_pending(pending_id: str, review: ReviewService = Depends(get_review_service)) -> PendingTransactionOut:
    """Get one pending transaction."""
    try:
        return review.get_pending(pending_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.put(
    "/ofx-pending-transactions/{pending_id}/category",
    response_model=PendingTransactionOut,
    tags=["ofx-pending-transactions"],
    summary="Override the category of a staged transaction",
    responses={404: NOT_FOUND_RESPONSE, 409: CONFLICT_RESPONSE},
)
def update_category(
    pending_id: str, body: UpdateCategoryRequest, review: ReviewService = Depends(get_review_service)
) -> PendingTransactionOut:
    """Set the final category of one pending transaction."""
    try:
        return review.update_final_category(pending_id, body.category_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.put(
    "/ofx-pending-transactions/{pending_id}/tags",
    response_model=PendingTransactionOut,
    tags=["ofx-pending-transactions"],
    summary="Replace the tags of a staged transaction",
    responses={
        400: {"description": "Unknown or inactive tags."},
        404: NOT_FOUND_RESPONSE,
        409: CONFLICT_RESPONSE,
    },
)
def update_tags(
    pending_id: str, body: UpdateTagsRequest, review: ReviewService = Depends(get_review_service)
) -> PendingTransactionOut:
    """Replace the tags of one pending transaction."""
    try:
        return review.update_tags(pending_id, body.tag_ids)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/ofx-pending-transactions/{pending_id}/suggest-category",
    response_model=PendingTransactionOut,
    tags=["ofx-pending-transactions"],
    summary="Re-run the classifier on a staged transaction",
    responses={404: NOT_FOUND_RESPONSE, 409: CONFLICT_RESPONSE},
)
def suggest_category(pending_id: str, review: ReviewService = Depends(get_review_service)) -> PendingTransactionOut:
    """Refresh the suggestions of one pending transaction."""
    try:
        return review.suggest_category(pending_id)
    except ImportPipelineError as exc:
        raise _http_error(exc) from exc


# --- Classification ---


@router.get(
    "/classification/stats",
    response_model=RuleStats,
    tags=["classification"],
    summary="Rule table sizes",
)
def classification_stats(engine: ClassificationEngine = Depends(get_engine)) -> RuleStats:
    """Return the number of loaded rules."""
    return engine.stats()


@router.post(
    "/classification/suggest",
    response_model=ClassificationResponse,
    tags=["classification"],
    summary="Classify a description",
    description="Run the category and payment-method rules against free text. Either suggestion may be null.",
    responses={
        200: {
            "description": "Suggestions for the text.",
            "content": {
                "application/json": {
                    "example": {
                        "category": {
                            "value": "Folha",
                            "confidence": 100,
                            "rationale": "Matched VT/VR (vale transporte / vale refeição) -> Folha",
                        },
                        "payment_method": None,
                    }
                }
            },
        }
    },
)
def classify(body: ClassificationRequest, engine: ClassificationEngine = Depends(get_engine)) -> ClassificationResponse:
    """Classify free text."""
    return engine.classify(body.description)


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
