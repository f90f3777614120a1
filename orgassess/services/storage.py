import os
from typing import Optional, Tuple

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from orgassess.services.errors import ValidationError, NotFound
from orgassess.utils.helpers import utcnow

ATTACHMENT_ROOT = "ticket-attachments"


def _upload_root() -> str:
    return current_app.config["UPLOAD_FOLDER"]


def allowed_file(filename: str) -> bool:
    if not filename or "." not in filename:
        return False
    ext = filename.rsplit(".", 1)[1].lower()
    return ext in current_app.config.get("ALLOWED_ATTACHMENT_EXTENSIONS", set())


def save_attachment(file: FileStorage, ticket_id: int, message_id: Optional[int] = None) -> Tuple[str, str, int]:
    """
    Store an upload as ticket-attachments/<ticket>/<message|0>/<stamp>-<name>.
    Returns (safe file name, path relative to UPLOAD_FOLDER, size in bytes).
    """
    if file is None or not file.filename:
        raise ValidationError("No file provided.")
    name = secure_filename(file.filename)
    if not name or not allowed_file(name):
        raise ValidationError("File type not allowed.")

    stamp = utcnow().strftime("%Y%m%d%H%M%S%f")
    rel_dir = os.path.join(ATTACHMENT_ROOT, str(ticket_id), str(message_id or 0))
    abs_dir = os.path.join(_upload_root(), rel_dir)
    os.makedirs(abs_dir, exist_ok=True)

    rel_path = os.path.join(rel_dir, f"{stamp}-{name}")
    abs_path = os.path.join(_upload_root(), rel_path)
    file.save(abs_path)
    size = os.path.getsize(abs_path)
    current_app.logger.info(
        "attachment_saved",
        extra={"event": "attachment_saved", "ticket_id": ticket_id, "path": rel_path, "bytes": size},
    )
    return name, rel_path, size


def absolute_path(rel_path: str) -> str:
    root = os.path.abspath(_upload_root())
    path = os.path.abspath(os.path.join(root, rel_path))
    # stored paths never leave the upload root
    if os.path.commonpath([root, path]) != root or not os.path.isfile(path):
        raise NotFound("Attachment not found.")
    return path
