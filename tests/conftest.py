"""Shared fixtures: a throw-away SQLite database per test, reference data and OFX builders."""

import os
import tempfile
from collections.abc import Callable, Iterator

# Configure the app before anything imports it.
_TMP_DIR = tempfile.mkdtemp(prefix="ofx-import-tests-")
os.environ.setdefault("LOG_FILE", os.path.join(_TMP_DIR, "ofx_import.log"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR}/default.db")
os.environ["WORKER_BACKEND"] = "thread"
os.environ["BATCH_PAUSE_SECONDS"] = "0"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.db import (  # noqa: E402
    BankAccount,
    Category,
    PaymentMethod,
    Tag,
    get_session_factory,
    init_db,
    session_scope,
)
from app.core.models import ImportStatus, PendingTransactionCreate, TransactionType  # noqa: E402
from app.core.repository import ImportRepository  # noqa: E402

OFX_HEADER = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
SECURITY:NONE
ENCODING:USASCII
CHARSET:1252
COMPRESSION:NONE
OLDFILEUID:NONE
NEWFILEUID:NONE

"""


def _stmttrn(record: dict) -> str:
    lines = ["<STMTTRN>"]
    for tag in ("TRNTYPE", "DTPOSTED", "TRNAMT", "FITID", "CHECKNUM", "NAME", "MEMO"):
        if tag in record:
            lines.append(f"<{tag}>{record[tag]}")
    lines.append("</STMTTRN>")
    return "\n".join(lines)


def build_ofx(records: list[dict], *, encoding: str = "latin-1") -> bytes:
    """Build an SGML bank statement holding ``records`` (dicts keyed by OFX tag)."""
    transactions = "\n".join(_stmttrn(record) for record in records)
    body = f"""<OFX>
<SIGNONMSGSRSV1>
<SONRS>
<STATUS>
<CODE>0
<SEVERITY>INFO
</STATUS>
<DTSERVER>20240131120000
<LANGUAGE>POR
</SONRS>
</SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<TRNUID>1001
<STATUS>
<CODE>0
<SEVERITY>INFO
</STATUS>
<STMTRS>
<CURDEF>BRL
<BANKACCTFROM>
<BANKID>0341
<BRANCHID>1234
<ACCTID>56789-0
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20240101
<DTEND>20240131
{transactions}
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>1500.25
<DTASOF>20240131
</LEDGERBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""
    return (OFX_HEADER + body).encode(encoding)


THREE_RECORDS = [
    {
        "TRNTYPE": "DEBIT",
        "DTPOSTED": "20240105120000[-3:BRT]",
        "TRNAMT": "-150.00",
        "FITID": "1",
        "MEMO": "PIX ENVIADO",
    },
    {"TRNTYPE": "CREDIT", "DTPOSTED": "20240106", "TRNAMT": "0", "FITID": "2", "MEMO": "ESTORNO"},
    {"TRNTYPE": "DEBIT", "DTPOSTED": "20240107", "TRNAMT": "-80.50", "FITID": "3", "MEMO": "Pagamento VT da Semana"},
]


@pytest.fixture
def ofx_builder() -> Callable[..., bytes]:
    """Return the OFX statement builder."""
    return build_ofx


@pytest.fixture
def three_record_ofx() -> bytes:
    """A statement whose second record has a zero amount."""
    return build_ofx(THREE_RECORDS)


@pytest.fixture
def database_url(tmp_path, monkeypatch) -> str:
    """Point the app at a fresh SQLite file and create the tables."""
    url = f"sqlite:///{tmp_path / 'ofx_import.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    init_db(url)
    return url


@pytest.fixture
def sessions(database_url: str) -> sessionmaker:
    """Session factory bound to the test database."""
    return get_session_factory(database_url)


@pytest.fixture
def reference_data(sessions: sessionmaker) -> dict[str, str]:
    """Insert a bank account, categories, payment methods and tags; return their ids by name."""
    ids: dict[str, str] = {}
    with session_scope(sessions) as session:
        account = BankAccount(name="Conta Corrente", bank_code="341", agency="1234", account_number="56789-0")
        session.add(account)
        for name in ("Folha", "Compras", "Impostos", "Outras Receitas", "Juros e Rendimentos"):
            category = Category(name=name, type="EXPENSE")
            session.add(category)
            session.flush()
            ids[name] = category.id
        for name in ("PIX", "Boleto Bancário", "Cartão de Débito", "Transferência Bancária", "Dinheiro"):
            method = PaymentMethod(name=name)
            session.add(method)
            session.flush()
            ids[name] = method.id
        active = Tag(name="Urgente")
        inactive = Tag(name="Antigo", is_active=False)
        session.add_all([active, inactive])
        session.flush()
        ids["account"] = account.id
        ids["tag:Urgente"] = active.id
        ids["tag:Antigo"] = inactive.id
    return ids


@pytest.fixture
def staged_import(sessions: sessionmaker, reference_data: dict[str, str]) -> Callable[..., str]:
    """Return a factory creating a PENDING_REVIEW job with the given staged rows."""

    def factory(rows: list[dict], status: ImportStatus = ImportStatus.PENDING_REVIEW) -> str:
        with session_scope(sessions) as session:
            repo = ImportRepository(session)
            job = repo.create_job(reference_data["account"], "extrato.ofx")
            job.total_records = len(rows)
            job.processed_records = len(rows)
            job.status = status.value
            payload = [
                PendingTransactionCreate(
                    import_job_id=job.id,
                    sequence=index,
                    title=row.get("title", f"Transação {index}"),
                    description=row.get("description", "Transação DEBIT"),
                    amount=row.get("amount", 1000 + index),
                    type=row.get("type", TransactionType.DEBIT),
                    transaction_date=row.get("transaction_date", "2024-01-05"),
                    trntype="DEBIT",
                    memo=row.get("memo", ""),
                    name=row.get("name", ""),
                    suggested_category_id=row.get("suggested_category_id"),
                    confidence=row.get("confidence"),
                    suggested_payment_method_id=row.get("suggested_payment_method_id"),
                    payment_method_confidence=row.get("payment_method_confidence"),
                )
                for index, row in enumerate(rows)
            ]
            repo.insert_pending_batch(payload)
            return job.id

    return factory


@pytest.fixture
def client(database_url: str) -> Iterator[TestClient]:
    """Test client running the app lifespan (tables and worker pool) against the test database."""
    from main import app

    with TestClient(app) as test_client:
        yield test_client
