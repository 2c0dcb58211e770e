"""Document-to-text conversion for stored attachments.

Failures never escape ``parse``: any error is rendered as a bracketed
placeholder so one unreadable attachment cannot abort a message.
"""

import asyncio
import csv
import io
from collections import OrderedDict
from typing import Dict, Iterable, Optional

import docx
import openpyxl
import pdfplumber

from submission_intake.core.config import settings
from submission_intake.services.storage_service import StorageService
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _kind(filename: str, content_type: Optional[str]) -> str:
    name = (filename or "").lower()
    content_type = (content_type or "").lower()
    if "pdf" in content_type or name.endswith(".pdf"):
        return "pdf"
    if "csv" in content_type or name.endswith(".csv"):
        return "csv"
    if "excel" in content_type or "spreadsheet" in content_type or name.endswith((".xlsx", ".xlsm")):
        return "excel"
    if "wordprocessingml" in content_type or name.endswith(".docx"):
        return "word"
    return "text"


def pdf_to_text(content: bytes) -> str:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        pages = [(page.extract_text() or "").strip() for page in pdf.pages]
    return "\n\n".join(text for text in pages if text)


def excel_to_text(content: bytes) -> str:
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        blocks = []
        for sheet in workbook.worksheets:
            lines = []
            for row in sheet.iter_rows(values_only=True):
                cells = [str(v).strip() for v in row if v is not None and str(v).strip()]
                if cells:
                    lines.append("\t".join(cells))
            if lines:
                blocks.append(f"=== Sheet: {sheet.title} ===\n" + "\n".join(lines))
        return "\n\n".join(blocks)
    finally:
        workbook.close()


def csv_to_text(content: bytes) -> str:
    reader = csv.reader(io.StringIO(content.decode("utf-8", errors="replace")))
    return "\n".join("\t".join(cell.strip() for cell in row if cell.strip()) for row in reader if any(row))


def word_to_text(content: bytes) -> str:
    document = docx.Document(io.BytesIO(content))
    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append("\t".join(cells))
    return "\n".join(lines)


CONVERTERS = {
    "pdf": pdf_to_text,
    "excel": excel_to_text,
    "csv": csv_to_text,
    "word": word_to_text,
    "text": lambda content: content.decode("utf-8", errors="replace"),
}


class DocumentParser:
    """Reads attachments from the blob store and converts them to text."""

    def __init__(self, storage: StorageService, bucket: Optional[str] = None):
        self.storage = storage
        self.bucket = bucket or settings.storage.bucket
        self.logger = LOGGER

    async def parse(self, attachment) -> str:
        """Best-effort text of one attachment; errors become a placeholder."""
        try:
            content = await self.storage.get(self.bucket, attachment.storage_key)
            kind = _kind(attachment.filename, attachment.content_type)
            text = await asyncio.to_thread(CONVERTERS[kind], content)
            self.logger.debug(
                f"Parsed {attachment.filename} as {kind}",
                extra={"chars": len(text)},
            )
            return text
        except Exception as e:
            self.logger.warning(
                f"Failed to parse {attachment.filename}: {e}",
                extra={"storage_key": attachment.storage_key},
            )
            return f"[Error parsing document: {e}]"

    async def render_sections(self, attachments: Iterable, document_types: Dict) -> Dict[str, str]:
        """Group attachment text by document type.

        Args:
            attachments: Stored attachments of one message
            document_types: ``{attachment.id: document_type}``

        Returns:
            ``{document_type: text}`` with a ``=== filename ===`` header per file
        """
        grouped: "OrderedDict[str, list]" = OrderedDict()
        for attachment in attachments:
            text = await self.parse(attachment)
            document_type = document_types.get(attachment.id, "other")
            grouped.setdefault(document_type, []).append(f"=== {attachment.filename} ===\n{text}")
        return {doc_type: "\n\n".join(blocks) for doc_type, blocks in grouped.items()}
