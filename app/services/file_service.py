"""Upload handling for statement files."""

from fastapi import UploadFile

from app.core.exceptions import ValidationError
from app.core.settings import Settings, get_settings


class FileService:
    """Validates uploaded statements and reads them into memory."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize FileService with the upload limits."""
        self.settings = settings or get_settings()

    def validate_filename(self, filename: str | None) -> str:
        """Return the filename if it carries the accepted extension, else raise ValidationError."""
        if not filename:
            msg = "No file uploaded"
            raise ValidationError(msg)
        extension = self.settings.allowed_extension.lower()
        if not filename.lower().endswith(extension):
            msg = f"Only {extension.upper().lstrip('.')} files accepted"
            raise ValidationError(msg)
        return filename

    async def read_upload(self, file: UploadFile) -> bytes:
        """Read the whole upload, rejecting empty or oversized files."""
        data = await file.read()
        if not data:
            msg = "Uploaded file is empty"
            raise ValidationError(msg)
        if len(data) > self.settings.max_upload_bytes:
            msg = f"Uploaded file exceeds {self.settings.max_upload_bytes} bytes"
            raise ValidationError(msg)
        return data
