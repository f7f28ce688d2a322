"""Statement parser for OFX files (SGML 1.x and XML 2.x).

The parser turns an uploaded byte buffer into a ``Statement``: the account header plus the
raw STMTTRN records in file order. Decoding tries UTF-8 first and falls back to latin-1,
which is how most Brazilian banks export. The markup is tokenized into a nested dict where
aggregates become dicts, leaves become strings and repeated tags become lists. SGML leaves
have no closing tag, so a tag is treated as an aggregate only when the document closes it
somewhere and it carries no text of its own.
"""

import html
import re
from typing import Any

from app.core.exceptions import StatementFormatError
from app.core.models import AccountHeader, RawStatementRecord, Statement
from app.core.utils import get_logger

logger = get_logger("ofx-import.parser")

DECODINGS: tuple[str, ...] = ("utf-8", "latin-1")
FALLBACK_ENCODING = "latin-1"
ROOT_MARKER = "<OFX>"
REPLACEMENT_CHAR = "\ufffd"

INVALID_FORMAT_MESSAGE = "Invalid OFX format"
NO_TRANSACTIONS_MESSAGE = "No transactions found in OFX file"

# (message set, transaction response, statement response, account aggregate)
STATEMENT_PATHS: tuple[tuple[str, str, str, str], ...] = (
    ("BANKMSGSRSV1", "STMTTRNRS", "STMTRS", "BANKACCTFROM"),
    ("CREDITCARDMSGSRSV1", "CCSTMTTRNRS", "CCSTMTRS", "CCACCTFROM"),
)

# A "<" not followed by a tag name (as in "5<10") is text, not markup.
_TAG_RE = re.compile(r"<(/?)([A-Za-z][A-Za-z0-9_.]*)(?:\s[^<>]*)?>")
_ROOT_RE = re.compile(re.escape(ROOT_MARKER), re.IGNORECASE)

OfxNode = dict[str, Any]


def decode_statement(content: bytes) -> tuple[str, str]:
    """Decode raw bytes, returning the text and the encoding that was used."""
    if not content:
        raise StatementFormatError("Empty OFX file")
    for encoding in DECODINGS:
        text = content.decode(encoding, errors="replace")
        if REPLACEMENT_CHAR not in text and ROOT_MARKER in text:
            logger.info(f"Statement decoded using {encoding}")
            return text, encoding
    logger.info(f"No clean decoding found, falling back to {FALLBACK_ENCODING}")
    return content.decode(FALLBACK_ENCODING), FALLBACK_ENCODING


def _tokenize(text: str, start: int) -> list[tuple[bool, str, str]]:
    """Return (is_close, name, text) for every tag from ``start``; text runs to the next tag."""
    matches = list(_TAG_RE.finditer(text, start))
    tokens = []
    for position, match in enumerate(matches):
        end = matches[position + 1].start() if position + 1 < len(matches) else len(text)
        value = html.unescape(text[match.end() : end]).strip()
        tokens.append((match.group(1) == "/", match.group(2).upper(), value))
    return tokens


def parse_ofx_tree(text: str) -> OfxNode:
    """Tokenize OFX markup into nested dicts, starting at the root element."""
    root_match = _ROOT_RE.search(text)
    if root_match is None:
        raise StatementFormatError(INVALID_FORMAT_MESSAGE)
    tokens = _tokenize(text, root_match.start())
    closed_names = {name for is_close, name, _ in tokens if is_close}

    root: OfxNode = {}
    stack: list[tuple[str, OfxNode]] = [("", root)]
    index = 0
    while index < len(tokens):
        is_close, name, value = tokens[index]
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        closes_here = following is not None and following[0] and following[1] == name
        if is_close:
            for depth in range(len(stack) - 1, 0, -1):
                if stack[depth][0] == name:
                    del stack[depth:]
                    break
        elif value or name not in closed_names or closes_here:
            _add_child(stack[-1][1], name, value)
            if closes_here:
                index += 1
        else:
            node: OfxNode = {}
            _add_child(stack[-1][1], name, node)
            stack.append((name, node))
        index += 1
    return root


def _add_child(parent: OfxNode, name: str, value: Any) -> None:
    if name not in parent:
        parent[name] = value
    elif isinstance(parent[name], list):
        parent[name].append(value)
    else:
        parent[name] = [parent[name], value]


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(node: Any, key: str) -> str | None:
    if not isinstance(node, dict):
        return None
    value = _first(node.get(key))
    return value if isinstance(value, str) else None


def _to_record(node: Any) -> RawStatementRecord:
    if not isinstance(node, dict):
        # Counted like any other record; the normalizer will skip it.
        return RawStatementRecord()
    return RawStatementRecord(
        trntype=(_text(node, "TRNTYPE") or "OTHER").upper(),
        dtposted=_text(node, "DTPOSTED") or None,
        trnamt=_text(node, "TRNAMT") or None,
        fitid=_text(node, "FITID") or None,
        memo=_text(node, "MEMO") or "",
        name=_text(node, "NAME") or "",
        checknum=_text(node, "CHECKNUM") or None,
    )


def parse_statement(text: str) -> Statement:
    """Extract the account header and transaction list from decoded OFX text."""
    tree = parse_ofx_tree(text)
    ofx = _first(tree.get("OFX"))
    if not isinstance(ofx, dict):
        raise StatementFormatError(INVALID_FORMAT_MESSAGE)

    for message_set, response_key, statement_key, account_key in STATEMENT_PATHS:
        response = _first(ofx.get(message_set))
        if not isinstance(response, dict):
            continue
        transaction_response = response.get(response_key)
        if isinstance(transaction_response, list):
            logger.warning(f"{len(transaction_response)} statements in file, importing the first one")
        transaction_response = _first(transaction_response)
        if not isinstance(transaction_response, dict):
            continue
        statement = _first(transaction_response.get(statement_key))
        if not isinstance(statement, dict):
            continue
        return _build_statement(statement, account_key)

    raise StatementFormatError(INVALID_FORMAT_MESSAGE)


def _build_statement(statement: OfxNode, account_key: str) -> Statement:
    transaction_list = _first(statement.get("BANKTRANLIST"))
    if not isinstance(transaction_list, dict) or "STMTTRN" not in transaction_list:
        raise StatementFormatError(NO_TRANSACTIONS_MESSAGE)
    entries = transaction_list["STMTTRN"]
    if not isinstance(entries, list):
        entries = [entries]

    account_node = _first(statement.get(account_key))
    balance_node = _first(statement.get("LEDGERBAL"))
    account = AccountHeader(
        bank_id=_text(account_node, "BANKID"),
        branch_id=_text(account_node, "BRANCHID"),
        account_id=_text(account_node, "ACCTID"),
        account_type=_text(account_node, "ACCTTYPE"),
        currency=_text(statement, "CURDEF"),
        start_date=_text(transaction_list, "DTSTART"),
        end_date=_text(transaction_list, "DTEND"),
        ledger_balance=_text(balance_node, "BALAMT"),
    )
    records = [_to_record(entry) for entry in entries]
    logger.info(f"Parsed statement for account {account.account_id or '?'}: {len(records)} transactions")
    return Statement(account=account, records=records)


def parse_statement_bytes(content: bytes) -> Statement:
    """Decode and parse an uploaded statement."""
    text, _ = decode_statement(content)
    return parse_statement(text)
