# infrastructure/document_processors.py
"""Text extraction and fixed-window chunking.

Extraction picks a reader from the file extension (PDF through PyMuPDF, DOCX
through python-docx, anything else as UTF-8 text) and always returns
sanitized text. A document that cannot be read degrades to an empty string so
one bad file never aborts an ingestion batch.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from core.exceptions import ExtractionError
from core.interfaces import ITextExtractor
from config import settings
from utils.common import get_file_extension

logger = logging.getLogger(settings.LOGGER_NAME)

# Control characters except \t and \n, plus C1 controls
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b-\x1f\x7f-\x9f]')
_HORIZONTAL_WS = re.compile(r'[ \t]+')
_EXCESS_NEWLINES = re.compile(r'\n{3,}')


def sanitize_text(text: Optional[str]) -> str:
    """Normalize line endings and whitespace and drop control characters."""
    if not text:
        return ""
    s = text.replace('\r\n', '\n').replace('\r', '\n')
    s = _CONTROL_CHARS.sub('', s)
    s = s.replace('\u00a0', ' ')
    s = _HORIZONTAL_WS.sub(' ', s)
    s = _EXCESS_NEWLINES.sub('\n\n', s)
    return s.strip()


def chunk_text(text: str, size: int = settings.CHUNK_SIZE,
               overlap: int = settings.CHUNK_OVERLAP) -> List[str]:
    """
    Split text into overlapping fixed-size windows.

    The window advances by max(1, size - max(0, overlap)) characters. Each
    window is trimmed and empty windows are dropped; the final partial window
    is kept when non-empty. Output depends only on the inputs.
    """
    if not text:
        return []
    size = max(1, int(size))
    step = max(1, size - max(0, int(overlap)))

    chunks: List[str] = []
    start = 0
    n = len(text)
    while start < n:
        piece = text[start:start + size].strip()
        if piece:
            chunks.append(piece)
        if start + size >= n:
            break
        start += step
    return chunks


def build_file_description(name: str, text: str,
                           preview_chars: int = settings.FILE_PREVIEW_CHARS) -> str:
    """
    Short description of an attached file for use as query context: its name
    and the first `preview_chars` characters of its text.
    """
    if not text:
        return f"File {name} is empty or its text could not be extracted."
    description = f"File {name} contents:\n{text[:preview_chars]}"
    if len(text) > preview_chars:
        description += f"\n...(truncated, {len(text)} characters in total)"
    return description


class TextExtractor(ITextExtractor):
    """Reads PDF, DOCX and plain-text files into sanitized text."""

    def _read_pdf(self, file_path: str) -> str:
        with fitz.open(file_path) as doc:
            return "\n".join(page.get_text() for page in doc)

    def _read_docx(self, file_path: str) -> str:
        doc = DocxDocument(file_path)
        return "\n".join(p.text for p in doc.paragraphs)

    def _read_text(self, file_path: str) -> str:
        with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
            return f.read()

    def extract_sync(self, file_path: str, filename: Optional[str] = None) -> str:
        """Blocking extraction. Raises ExtractionError."""
        ext = get_file_extension(filename or file_path)
        try:
            if ext == 'pdf':
                raw = self._read_pdf(file_path)
            elif ext == 'docx':
                raw = self._read_docx(file_path)
            else:
                raw = self._read_text(file_path)
        except Exception as e:
            raise ExtractionError(f"Could not read '{filename or file_path}': {e}") from e
        return sanitize_text(raw)

    async def extract(self, file_path: str, filename: Optional[str] = None) -> str:
        try:
            text = await asyncio.to_thread(self.extract_sync, file_path, filename)
        except ExtractionError as e:
            logger.warning(f"Extraction degraded to empty text: {e}")
            return ""
        logger.info(f"Extracted {len(text)} characters from '{filename or file_path}'")
        return text

    async def describe_file(self, file_path: str, filename: Optional[str] = None,
                            preview_chars: int = settings.FILE_PREVIEW_CHARS) -> str:
        """Extract a file and build its short description."""
        name = filename or Path(file_path).name
        text = await self.extract(file_path, name)
        return build_file_description(name, text, preview_chars)
