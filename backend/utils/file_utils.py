"""
File handling utilities: upload validation and storage, spreadsheet read/write.
"""

import io
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill

from config.settings import get_settings
from core.exceptions import BadRequestError

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class StoredFile:
    original_name: str
    stored_name: str
    path: str
    size: int


class FileValidator:
    """Checks uploads against the allowed extensions and size limit."""

    @staticmethod
    def validate(filename: Optional[str], size: int, allowed_extensions: Sequence[str],
                 max_size: int = None) -> str:
        """Return the lower-cased extension or raise BadRequestError."""
        if not filename:
            raise BadRequestError("No file provided", field="file")

        extension = Path(filename).suffix.lower()
        if extension not in [ext.lower() for ext in allowed_extensions]:
            raise BadRequestError(
                f"Unsupported file type '{extension or filename}'. Allowed: {', '.join(allowed_extensions)}",
                field="file"
            )

        max_size = max_size or settings.MAX_FILE_SIZE
        if size > max_size:
            raise BadRequestError(
                f"File too large ({size} bytes). Maximum size is {max_size // (1024 * 1024)}MB",
                field="file"
            )
        if size == 0:
            raise BadRequestError("Uploaded file is empty", field="file")
        return extension


class FileManager:
    """Stores validated uploads under the upload directory."""

    def __init__(self, upload_dir: str = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIRECTORY)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, content: bytes, filename: str,
                    allowed_extensions: Sequence[str] = None) -> StoredFile:
        extension = FileValidator.validate(filename, len(content), allowed_extensions or settings.ALLOWED_UPLOAD_TYPES)
        stored_name = f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}{extension}"
        path = self.upload_dir / stored_name
        with open(path, "wb") as f:
            f.write(content)

        logger.info(f"Stored upload {filename} as {stored_name} ({len(content)} bytes)")
        return StoredFile(original_name=filename, stored_name=stored_name, path=f"/uploads/{stored_name}", size=len(content))


def clean_cell(value: Any) -> Any:
    """Normalize a spreadsheet cell: NaN/NaT/blank become None, strings are stripped."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class ExcelProcessor:
    """Spreadsheet reading and writing for bulk order transfer."""

    @staticmethod
    def read_rows(content: bytes, filename: str) -> List[Dict[str, Any]]:
        """Read the first sheet (or a CSV) into a list of row dicts keyed by header."""
        try:
            buffer = io.BytesIO(content)
            if filename.lower().endswith(".csv"):
                df = pd.read_csv(buffer, dtype=object)
            else:
                df = pd.read_excel(buffer, sheet_name=0, dtype=object)

            df.columns = [str(column).strip() for column in df.columns]
            df = df.dropna(how="all")
            rows = [
                {column: clean_cell(value) for column, value in record.items()}
                for record in df.to_dict(orient="records")
            ]
            logger.info(f"Read {len(rows)} rows from {filename}")
            return rows

        except Exception as e:
            logger.error(f"Failed to read spreadsheet {filename}: {str(e)}")
            raise BadRequestError(f"Could not read spreadsheet: {e}", field="file")

    @staticmethod
    def create_workbook(data: Dict[str, pd.DataFrame]) -> bytes:
        """Create a formatted Excel workbook in memory, one sheet per frame."""
        try:
            output = io.BytesIO()
            with pd.ExcelWriter(output, engine='openpyxl') as writer:
                for sheet_name, df in data.items():
                    df.to_excel(writer, sheet_name=sheet_name, index=False)

                    worksheet = writer.sheets[sheet_name]

                    # Style headers
                    header_fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
                    header_font = Font(color='FFFFFF', bold=True)

                    for cell in worksheet[1]:
                        cell.fill = header_fill
                        cell.font = header_font
                        cell.alignment = Alignment(horizontal='center')

                    # Auto-adjust column widths
                    for column in worksheet.columns:
                        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
                        worksheet.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

            return output.getvalue()

        except Exception as e:
            logger.error(f"Excel workbook creation failed: {str(e)}")
            raise
