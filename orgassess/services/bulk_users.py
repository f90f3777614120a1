from __future__ import annotations

from dataclasses import dataclass, field
from typing import IO, List, Optional, Tuple, Union

import pandas as pd
from sqlalchemy.orm import Session

from orgassess.models import User
from orgassess.services import users as user_svc
from orgassess.services.errors import ServiceError, ValidationError, PermissionDenied
from orgassess.services import access_control as ac
from orgassess.utils.validators import normalize_email

CSV_COLUMNS = ("email", "first_name", "last_name", "role", "department", "job_title")
REQUIRED_COLUMNS = ("email", "first_name", "last_name", "role")
MAX_ROWS = 1000


@dataclass
class ImportReport:
    created: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)
    # (user, temporary password) for invite emails after commit
    created_users: List[Tuple[User, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "created_ids": [u.id for u, _ in self.created_users],
        }


def read_csv(source: Union[str, IO]) -> pd.DataFrame:
    """
    Load the CSV as strings and normalize the header (trim, lowercase, spaces -> _).
    Empty cells become "".
    """
    try:
        df = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ValidationError(f"Could not read CSV: {e}") from e

    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"CSV is missing required columns: {', '.join(missing)}.")
    for col in CSV_COLUMNS:
        if col not in df.columns:
            df[col] = ""
    df = df[list(CSV_COLUMNS)]
    df = df.apply(lambda s: s.str.strip())
    df["email"] = df["email"].map(normalize_email)
    df["role"] = df["role"].str.lower()
    if len(df) > MAX_ROWS:
        raise ValidationError(f"CSV has {len(df)} rows; the limit is {MAX_ROWS}.")
    return df


def import_users(
    session: Session,
    actor,
    source: Union[str, IO],
    *,
    organization_id: Optional[int] = None,
) -> ImportReport:
    """
    Create one user per CSV row in `organization_id` (org admins: always their own).
    Existing emails and in-file duplicates are skipped; invalid rows are reported
    with their 1-based line number (header = line 1) and do not stop the import.
    """
    if actor is not None:
        if not ac.has_permission(actor, ac.CREATE_USERS):
            raise PermissionDenied("You do not have permission to create users.")
        if not ac.is_privileged(actor):
            organization_id = actor.organization_id
    if not organization_id:
        raise ValidationError("Organization is required.")

    df = read_csv(source)
    report = ImportReport()
    seen = set()

    for idx, row in df.iterrows():
        line = int(idx) + 2
        email = row["email"]
        if email and (email in seen or user_svc.find_by_email(session, email) is not None):
            report.skipped += 1
            report.errors.append({"line": line, "email": email, "error": "already exists"})
            continue
        seen.add(email)

        data = {k: (row[k] or None) for k in CSV_COLUMNS}
        data["organization_id"] = organization_id
        try:
            user, password = user_svc.create_user(session, actor, data)
        except ServiceError as e:
            report.failed += 1
            report.errors.append({"line": line, "email": email or None, "error": e.message})
            continue
        report.created += 1
        report.created_users.append((user, password))

    return report
