import os
import secrets
import time

from werkzeug.utils import secure_filename

from voat.errors import ValidationError

ALLOWED_RESUME_TYPES = {'application/pdf'}


def save_resume(file_storage, upload_folder: str) -> str:
    """Store an uploaded resume and return the stored filename."""
    if not file_storage or not file_storage.filename:
        raise ValidationError("Empty file")
    if file_storage.mimetype not in ALLOWED_RESUME_TYPES:
        raise ValidationError("Only PDF resumes are allowed")

    base, ext = os.path.splitext(secure_filename(file_storage.filename))
    filename = f"resume-{int(time.time() * 1000)}-{secrets.token_hex(4)}-{base or 'upload'}{ext or '.pdf'}"
    os.makedirs(upload_folder, exist_ok=True)
    file_storage.save(os.path.join(upload_folder, filename))
    return filename


def discard_resume(filename: str, upload_folder: str) -> None:
    path = os.path.join(upload_folder, os.path.basename(filename))
    if os.path.isfile(path):
        os.remove(path)
