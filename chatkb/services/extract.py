
import asyncio
import codecs
import io
import json
from typing import Any, List

import chardet
from docx import Document as DocxDocument
from pdfminer.high_level import extract_text as pdf_extract

from ..utils.text import clean_pdf_text

TEXT = "text/plain"
JSON = "application/json"
PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC = "application/msword"

SUPPORTED_TYPES = (TEXT, JSON, PDF, DOCX, DOC)

# .docx is a zip container; binary Word 97-2003 files are not
ZIP_MAGIC = b"PK\x03\x04"


class UnsupportedType(Exception):
    """Content type is not one the extractor handles"""
    def __init__(self, content_type: str, detail: str = ""):
        self.content_type = content_type
        message = f"Unsupported file type: {content_type}"
        super().__init__(f"{message} ({detail})" if detail else message)


class ExtractionFailure(Exception):
    """Payload could not be parsed into text"""
    pass


def is_legacy_doc(content: bytes, content_type: str) -> bool:
    """Binary .doc payload, which python-docx cannot open."""
    return content_type == DOC and not content.startswith(ZIP_MAGIC)


def decode_text(content: bytes) -> str:
    if content.startswith(codecs.BOM_UTF8):
        content = content[len(codecs.BOM_UTF8):]
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        pass
    enc = chardet.detect(content).get("encoding") or "utf-8"
    try:
        return content.decode(enc, errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


def _scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def json_to_text(obj: Any, depth: int = 0) -> str:
    """Flatten parsed JSON into indented `key: value` / `[i]: value` lines."""
    lines: List[str] = []
    indent = "  " * depth
    if isinstance(obj, list):
        for index, item in enumerate(obj):
            if isinstance(item, (dict, list)):
                lines.append(f"{indent}[{index}]:")
                nested = json_to_text(item, depth + 1)
                if nested:
                    lines.append(nested)
            else:
                lines.append(f"{indent}[{index}]: {_scalar(item)}")
    elif isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(value, (dict, list)):
                lines.append(f"{indent}{key}:")
                nested = json_to_text(value, depth + 1)
                if nested:
                    lines.append(nested)
            else:
                lines.append(f"{indent}{key}: {_scalar(value)}")
    else:
        return f"{indent}{_scalar(obj)}"
    return "\n".join(lines)


def extract_text_sync(content: bytes, content_type: str, filename: str) -> str:
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type not in SUPPORTED_TYPES:
        raise UnsupportedType(content_type)
    try:
        if content_type == PDF:
            text = clean_pdf_text(pdf_extract(io.BytesIO(content)))
        elif content_type in (DOCX, DOC):
            doc = DocxDocument(io.BytesIO(content))
            text = "\n".join(p.text for p in doc.paragraphs)
        elif content_type == JSON:
            text = json_to_text(json.loads(decode_text(content)))
        else:
            text = decode_text(content)
    except Exception as e:
        raise ExtractionFailure(f"Failed to extract text from {filename}: {e}") from e
    if not text or not text.strip():
        raise ExtractionFailure(f"No text could be extracted from {filename}")
    return text


async def extract_text(content: bytes, content_type: str, filename: str) -> str:
    # Parsers are blocking; keep them off the event loop
    return await asyncio.to_thread(extract_text_sync, content, content_type, filename)
