import re
from datetime import date, datetime
from typing import Optional

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

def clean_str(val: Optional[str], max_len: int = 255) -> Optional[str]:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]

def clean_text(val: Optional[str]) -> Optional[str]:
    """Trim but keep line breaks (descriptions, bios, messages)."""
    if val is None:
        return None
    s = str(val).strip()
    return s or None

def normalize_email(val: Optional[str]) -> str:
    return (val or "").strip().lower()

def is_valid_email(val: Optional[str]) -> bool:
    if not val:
        return False
    return bool(_EMAIL_RE.match(val))

def normalize_phone(val: Optional[str]) -> Optional[str]:
    """
    Keep a leading '+' and digits only; at least 7 digits. Returns None if invalid or empty.
    """
    if not val:
        return None
    s = str(val).strip()
    digits = "".join(re.findall(r"\d", s))
    if len(digits) < 7:
        return None
    return ("+" if s.startswith("+") else "") + digits

def parse_date(val) -> Optional[date]:
    """Accept date objects or 'YYYY-MM-DD' strings (an ISO datetime is cut to its date)."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    try:
        return datetime.strptime(str(val).strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None
