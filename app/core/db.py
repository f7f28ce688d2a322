"""DB engine, session helpers and ORM tables for the OFX import pipeline."""

from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    JSON,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from app.core.utils import ensure_dir, new_id, utcnow

Base = declarative_base()


# --- Reference data owned by the surrounding application ---


class BankAccount(Base):
    """A bank account statements are imported into."""

    __tablename__ = "bank_accounts"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    bank_code = Column(String, nullable=True)
    agency = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Category(Base):
    """A financial category a transaction can be filed under."""

    __tablename__ = "financial_categories"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    type = Column(String, nullable=True)
    description = Column(Text, nullable=True)


class PaymentMethod(Base):
    """A payment method (PIX, boleto, card...) a transaction was made with."""

    __tablename__ = "payment_methods"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Tag(Base):
    """A free-form label attachable to pending transactions."""

    __tablename__ = "tags"
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


# --- Pipeline tables ---


class ImportJob(Base):
    """One uploaded statement file and its processing lifecycle."""

    __tablename__ = "ofx_imports"
    id = Column(String, primary_key=True, default=new_id)
    bank_account_id = Column(String, ForeignKey("bank_accounts.id"), nullable=False)
    file_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="PENDING")
    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    statement_account = Column(JSON, nullable=True)
    import_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    bank_account = relationship("BankAccount")
    pending_transactions = relationship(
        "PendingTransaction",
        back_populates="import_job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PendingTransaction.sequence",
    )


class PendingTransaction(Base):
    """A staged transaction awaiting review and approval."""

    __tablename__ = "ofx_pending_transactions"
    __table_args__ = (
        UniqueConstraint("import_job_id", "title", "amount", "transaction_date", name="uq_pending_dedup"),
    )
    id = Column(String, primary_key=True, default=new_id)
    import_job_id = Column(String, ForeignKey("ofx_imports.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    transaction_date = Column(Date, nullable=False)
    fitid = Column(String, nullable=True)
    trntype = Column(String, nullable=False)
    checknum = Column(String, nullable=True)
    memo = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    suggested_category_id = Column(
        String, ForeignKey("financial_categories.id", ondelete="SET NULL"), nullable=True
    )
    confidence = Column(Integer, nullable=True)
    suggested_payment_method_id = Column(
        String, ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
    )
    payment_method_confidence = Column(Integer, nullable=True)
    final_category_id = Column(String, ForeignKey("financial_categories.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    import_job = relationship("ImportJob", back_populates="pending_transactions")
    suggested_category = relationship("Category", foreign_keys=[suggested_category_id])
    final_category = relationship("Category", foreign_keys=[final_category_id])
    suggested_payment_method = relationship("PaymentMethod", foreign_keys=[suggested_payment_method_id])
    tag_links = relationship(
        "PendingTransactionTag",
        back_populates="pending_transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def tags(self) -> list[Tag]:
        """Tags currently attached to this row."""
        return [link.tag for link in self.tag_links]


class PendingTransactionTag(Base):
    """Association between a pending transaction and a tag."""

    __tablename__ = "ofx_pending_transaction_tags"
    pending_transaction_id = Column(
        String, ForeignKey("ofx_pending_transactions.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id = Column(String, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    pending_transaction = relationship("PendingTransaction", back_populates="tag_links")
    tag = relationship("Tag")


class LedgerTransaction(Base):
    """An authoritative ledger entry created when an import is approved."""

    __tablename__ = "financial_transactions"
    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PAID")
    transaction_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    paid_date = Column(Date, nullable=True)
    category_id = Column(String, ForeignKey("financial_categories.id"), nullable=True)
    payment_method_id = Column(String, ForeignKey("payment_methods.id"), nullable=True)
    bank_account_id = Column(String, ForeignKey("bank_accounts.id"), nullable=False)
    import_job_id = Column(String, ForeignKey("ofx_imports.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# --- Engine and sessions ---


def _on_sqlite_connect(dbapi_conn: object, _record: object) -> None:
    # SQLAlchemy emits BEGIN itself so SAVEPOINTs nest properly.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn: object) -> None:
    # Every transaction holds the write lock from its first statement.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


@lru_cache(maxsize=8)
def get_engine(database_url: str | None = None) -> Engine:
    """Create (once per URL) a SQLAlchemy engine for the configured database URL."""
    from app.core.settings import get_settings

    settings = get_settings()
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        path = url.split("///", 1)[-1]
        if path and path != ":memory:" and "/" in path:
            ensure_dir(path.rsplit("/", 1)[0])
        engine = create_engine(
            url, connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout_seconds}
        )
        event.listen(engine, "connect", _on_sqlite_connect)
        event.listen(engine, "begin", _on_sqlite_begin)
        return engine
    return create_engine(url, pool_pre_ping=True)


def get_session_factory(database_url: str | None = None) -> sessionmaker:
    """Return a session factory bound to the engine for ``database_url``."""
    return sessionmaker(bind=get_engine(database_url), autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(database_url: str | None = None) -> None:
    """Create every table that does not exist yet."""
    Base.metadata.create_all(get_engine(database_url))


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
