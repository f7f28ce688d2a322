"""Human review of staged transactions and their promotion into the ledger.

Reviewers override categories (one row or many), replace tags, and ask the engine for a
fresh suggestion. Approval creates one ledger transaction per staged row, each inside its own
savepoint so a failing row does not undo the others, then completes the job. Staging rows
are only deleted when every row went through.
"""

from sqlalchemy.orm import Session, sessionmaker

from app.classification.base import BaseClassifier
from app.classification.engine import default_engine
from app.core.db import PendingTransaction, session_scope
from app.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.core.models import (
    ApprovalError,
    ApprovalResult,
    BatchUpdateResult,
    BatchUpdateSummary,
    CategoryOverride,
    ImportStatus,
    ImportSummary,
    PendingTransactionOut,
    UpdateResult,
)
from app.core.repository import ImportRepository
from app.core.settings import Settings, get_settings
from app.core.utils import get_logger
from app.services.bulk_processor import CATEGORY_SYNONYMS, PAYMENT_METHOD_SYNONYMS, NameResolver

logger = get_logger("ofx-import.review")


def promoted_value(
    final_id: str | None, suggested_id: str | None, confidence: int | None, threshold: int
) -> str | None:
    """Manual choice first, then a suggestion that meets the threshold, else nothing."""
    if final_id:
        return final_id
    if suggested_id and confidence is not None and confidence >= threshold:
        return suggested_id
    return None


class ReviewService:
    """Review and approval operations on the staged transactions of an import."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings | None = None,
        classifier: BaseClassifier = default_engine,
    ) -> None:
        """Initialize the service with the store, settings and the classifier used for re-suggestions."""
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.classifier = classifier

    @property
    def threshold(self) -> int:
        """Minimum confidence for a suggestion to be promoted."""
        return self.settings.promotion_threshold

    # --- Reading ---

    def list_for_import(self, import_id: str) -> list[PendingTransactionOut]:
        """Return a job's staged rows in file order."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            repo.get_job(import_id)
            return [PendingTransactionOut.model_validate(row) for row in repo.pending_for_job(import_id)]

    def get_pending(self, pending_id: str) -> PendingTransactionOut:
        """Return one staged row."""
        with session_scope(self.session_factory) as session:
            return PendingTransactionOut.model_validate(ImportRepository(session).get_pending(pending_id))

    def summary(self, import_id: str) -> ImportSummary:
        """Count what a reviewer still has to look at before approving."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            job = repo.get_job(import_id)
            rows = repo.pending_for_job(import_id)
            with_final = sum(1 for row in rows if row.final_category_id)
            with_suggested = sum(1 for row in rows if row.suggested_category_id)
            high_confidence = sum(
                1 for row in rows if row.suggested_category_id and (row.confidence or 0) >= self.threshold
            )
            uncategorized = sum(
                1
                for row in rows
                if promoted_value(row.final_category_id, row.suggested_category_id, row.confidence, self.threshold)
                is None
            )
            return ImportSummary(
                import_id=job.id,
                status=ImportStatus(job.status),
                total_transactions=len(rows),
                with_final_category=with_final,
                with_suggested_category=with_suggested,
                high_confidence_suggestions=high_confidence,
                uncategorized=uncategorized,
                total_amount=sum(row.amount for row in rows),
                ready_to_approve=uncategorized == 0,
            )

    # --- Overrides ---

    def _editable(self, repo: ImportRepository, pending_id: str) -> PendingTransaction:
        pending = repo.get_pending(pending_id)
        status = ImportStatus(pending.import_job.status)
        if status.is_terminal:
            msg = f"Import {pending.import_job_id} is {status} and can no longer be edited"
            raise InvalidStateError(msg)
        return pending

    def _apply_category(self, session: Session, pending_id: str, category_id: str) -> PendingTransaction:
        repo = ImportRepository(session)
        pending = self._editable(repo, pending_id)
        if repo.get_category(category_id) is None:
            msg = f"Category not found: {category_id}"
            raise NotFoundError(msg)
        pending.final_category_id = category_id
        session.flush()
        session.refresh(pending, attribute_names=["final_category"])
        return pending

    def update_final_category(self, pending_id: str, category_id: str) -> PendingTransactionOut:
        """Set the reviewer's category for one staged row."""
        with session_scope(self.session_factory) as session:
            pending = self._apply_category(session, pending_id, category_id)
            logger.info(f"Pending transaction {pending_id} categorized as {category_id}")
            return PendingTransactionOut.model_validate(pending)

    def batch_update_categories(self, overrides: list[CategoryOverride]) -> BatchUpdateResult:
        """Apply many category overrides; each row succeeds or fails on its own."""
        updates: list[UpdateResult] = []
        for override in overrides:
            try:
                with session_scope(self.session_factory) as session:
                    self._apply_category(session, override.id, override.category_id)
            except (NotFoundError, InvalidStateError) as exc:
                updates.append(UpdateResult(id=override.id, success=False, error=str(exc)))
                continue
            updates.append(UpdateResult(id=override.id, success=True))
        succeeded = sum(1 for update in updates if update.success)
        logger.info(f"Batch category update: {succeeded}/{len(updates)} applied")
        return BatchUpdateResult(
            message="Batch update finished",
            updates=updates,
            summary=BatchUpdateSummary(total=len(updates), success=succeeded, errors=len(updates) - succeeded),
        )

    def update_tags(self, pending_id: str, tag_ids: list[str]) -> PendingTransactionOut:
        """Replace the tags of one staged row; every tag must exist and be active."""
        wanted = list(dict.fromkeys(tag_ids))
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            pending = self._editable(repo, pending_id)
            tags = repo.get_active_tags(wanted)
            if len(tags) != len(wanted):
                found = {tag.id for tag in tags}
                missing = [tag_id for tag_id in wanted if tag_id not in found]
                msg = f"Unknown or inactive tags: {', '.join(missing)}"
                raise ValidationError(msg)
            repo.replace_tags(pending, tags)
            return PendingTransactionOut.model_validate(pending)

    def suggest_category(self, pending_id: str) -> PendingTransactionOut:
        """Re-run the classifier on a staged row and store whatever resolves."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            pending = self._editable(repo, pending_id)
            text = pending.name or pending.memo or pending.description
            result = self.classifier.classify(text)
            categories = NameResolver([(c.id, c.name) for c in repo.list_categories()], CATEGORY_SYNONYMS)
            methods = NameResolver([(m.id, m.name) for m in repo.list_payment_methods()], PAYMENT_METHOD_SYNONYMS)
            category_id = categories.resolve(result.category.value) if result.category else None
            method_id = methods.resolve(result.payment_method.value) if result.payment_method else None
            pending.suggested_category_id = category_id
            pending.confidence = result.category.confidence if category_id else None
            pending.suggested_payment_method_id = method_id
            pending.payment_method_confidence = result.payment_method.confidence if method_id else None
            session.flush()
            session.refresh(pending, attribute_names=["suggested_category", "suggested_payment_method"])
            return PendingTransactionOut.model_validate(pending)

    # --- Approval ---

    def approve(self, import_id: str) -> ApprovalResult:
        """Promote every staged row of a job into the ledger and complete the job."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            job = repo.get_job(import_id)
            if ImportStatus(job.status) != ImportStatus.PENDING_REVIEW:
                msg = f"Import {import_id} is {job.status}; only imports pending review can be approved"
                raise InvalidStateError(msg)
            rows = repo.pending_for_job(import_id)
            if not rows:
                msg = f"Import {import_id} has no pending transactions"
                raise ValidationError(msg)

            created: list[str] = []
            errors: list[ApprovalError] = []
            for row in rows:
                category_id = promoted_value(
                    row.final_category_id, row.suggested_category_id, row.confidence, self.threshold
                )
                method_id = promoted_value(
                    None, row.suggested_payment_method_id, row.payment_method_confidence, self.threshold
                )
                try:
                    with session.begin_nested():
                        ledger = repo.create_ledger_transaction(row, job.bank_account_id, category_id, method_id)
                except Exception as exc:
                    logger.exception(f"[import {import_id}] could not promote pending transaction {row.id}")
                    errors.append(ApprovalError(pending_transaction_id=row.id, error=str(exc)))
                    continue
                created.append(ledger.id)

            repo.transition(job, ImportStatus.COMPLETED)
            if errors:
                logger.warning(f"[import {import_id}] {len(errors)} rows failed; staging rows kept for inspection")
            else:
                repo.delete_pending_for_job(import_id)

        logger.info(f"Import {import_id} approved: {len(created)}/{len(rows)} ledger transactions created")
        return ApprovalResult(
            message="Import approved" if not errors else "Import approved with errors",
            total=len(rows),
            created=len(created),
            ledger_transaction_ids=created,
            errors=errors,
        )
