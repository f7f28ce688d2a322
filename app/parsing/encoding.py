"""Best-effort repair of mis-decoded text found in Brazilian bank exports.

Statements are often UTF-8 bytes that went through a single-byte (cp1252/latin-1) decode
somewhere upstream, so "é" shows up as "Ã©". The fixes below are plain substring
replacements applied in order; banking terms come first because their corrupted form
contains sequences the per-character fixes do not know about.
"""

# Whole words whose corrupted spelling is not recoverable character by character.
BANKING_TERM_FIXES: tuple[tuple[str, str], ...] = (
    ("SÃƒQUE", "SAQUE"),
    ("DÃ‰B", "DÉB"),
    ("CRÃ‰D", "CRÉD"),
    ("TRANSFERÃŠNCIA", "TRANSFERÊNCIA"),
    ("DEPÃ“SITO", "DEPÓSITO"),
    ("Ã“RGÃƒOS", "ÓRGÃOS"),
    ("PREVIDÃŠNCIA", "PREVIDÊNCIA"),
    ("CONVÃŠNIO", "CONVÊNIO"),
    ("EMPRÃ‰STIMO", "EMPRÉSTIMO"),
    ("RESGATEAPLICAÃ‡ÃƒO", "RESGATE APLICAÇÃO"),
    ("APLICAÃ‡ÃƒO", "APLICAÇÃO"),
)

# UTF-8 two-byte sequences read back as cp1252/latin-1.
CHARACTER_FIXES: tuple[tuple[str, str], ...] = (
    ("Ã¡", "á"),
    ("Ã©", "é"),
    ("Ã\u00ad", "í"),
    ("Ã³", "ó"),
    ("Ãº", "ú"),
    ("Ã£", "ã"),
    ("Ãµ", "õ"),
    ("Ã§", "ç"),
    ("Ã¢", "â"),
    ("Ãª", "ê"),
    ("Ã´", "ô"),
    ("Ã\u00a0", "à"),
    ("Ã¼", "ü"),
    ("Ã\u0081", "Á"),
    ("Ã‰", "É"),
    ("Ã\u008d", "Í"),
    ("Ã“", "Ó"),
    ("Ãš", "Ú"),
    ("Ã‡", "Ç"),
    ("Ã‚", "Â"),
    ("ÃŠ", "Ê"),
    ("Ã”", "Ô"),
    ("Ã•", "Õ"),
    ("Ã€", "À"),
    ("Ãƒ", "Ã"),
)

ENCODING_FIXES: tuple[tuple[str, str], ...] = BANKING_TERM_FIXES + CHARACTER_FIXES


def fix_encoding(text: str | None) -> str:
    """Apply every known repair to ``text``. Empty or missing input yields an empty string."""
    if not text:
        return ""
    result = text
    for corrupted, replacement in ENCODING_FIXES:
        if corrupted in result:
            result = result.replace(corrupted, replacement)
    return result
