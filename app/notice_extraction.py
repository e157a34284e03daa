"""
Notice Extraction

Sends a GST notice PDF to Gemini and returns the structured fields it finds,
each as {"value", "confidence"}. Amounts, dates and the GSTIN are normalized
after extraction.
"""

import base64
import binascii
import io
import json
import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, Optional

from google import genai
from google.genai import types
from PyPDF2 import PdfReader

from app.statutory_deadlines import calculate_reply_deadline

logger = logging.getLogger(__name__)

MODEL_NAME = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
MIN_BASE64_LENGTH = 100

GSTIN_REGEX = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
DATE_REGEX = re.compile(r"^\s*(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})\s*$")

SYSTEM_PROMPT = """You are an expert at extracting structured data from Indian GST notices (ASMT-10, ASMT-11, DRC-01, DRC-01A, DRC-03, DRC-07, etc.). Extract all fields with confidence scores.

DOCUMENT TYPE DETECTION:
- Identify if this is a main notice or an annexure
- Return documentType: "main_notice" or "annexure"

REQUIRED FIELDS:
- DIN (Document Identification Number): 15-20 character alphanumeric
- Notice Number/Reference: look for "Reference No.", "Ref No.", "Notice No."
- GSTIN: 15 characters (2 digits + 5 letters + 4 digits + 1 letter + 1 alphanumeric + Z + 1 alphanumeric)
- Notice Type: FORM GST DRC-01A, ASMT-10, DRC-01, etc.
- Issue Date and Due Date in DD/MM/YYYY or DD.MM.YYYY format
- Tax Period: e.g. "F.Y. 2021-2022"

GSTIN RULES:
- The taxpayer's GSTIN appears in the notice header or the "To:" section
- Do NOT use supplier GSTINs from discrepancy or ITC tables
- If the taxpayer GSTIN is not visible, return an empty string

TAXPAYER DETAILS:
- Taxpayer Name: legal name from the header ("Name", "M/s."), never a supplier name
- Trade Name: business trade name if different

NOTICE CONTENT:
- Subject: the full subject line
- Legal Section: e.g. "Section 73(1)", "Section 74"
- Office: issuing GST office or authority

AMOUNTS (Indian format):
- "93,90,812" = 9390812
- "₹97,06,154/-" = 9706154
- Look for "Total Tax", "Demand", "IGST", "CGST", "SGST"

Return JSON:
{
  "fields": {
    "documentType": {"value": "main_notice", "confidence": 90},
    "documentTypeLabel": {"value": "DRC-01A", "confidence": 85},
    "din": {"value": "...", "confidence": 95},
    "noticeNo": {"value": "...", "confidence": 90},
    "gstin": {"value": "...", "confidence": 95},
    "noticeType": {"value": "DRC-01A", "confidence": 95},
    "issueDate": {"value": "DD/MM/YYYY", "confidence": 85},
    "dueDate": {"value": "DD/MM/YYYY", "confidence": 90},
    "period": {"value": "F.Y. 2021-2022", "confidence": 85},
    "taxpayerName": {"value": "...", "confidence": 90},
    "tradeName": {"value": "...", "confidence": 85},
    "subject": {"value": "...", "confidence": 85},
    "legalSection": {"value": "Section 73(1)", "confidence": 80},
    "office": {"value": "...", "confidence": 80},
    "amount": {"value": "9390812", "confidence": 85}
  },
  "rawText": "full extracted text..."
}"""

USER_PROMPT = "Extract all information from this GST notice PDF with confidence scores. This may be a multi-page scanned document."


class NoticeExtractionError(Exception):
    def __init__(self, message: str, code: str = "AI_ERROR", raw_text: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.raw_text = raw_text


def _api_key() -> Optional[str]:
    return os.environ.get("GOOGLE_CLOUD_API_KEY") or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")


def is_ocr_configured() -> bool:
    return bool(_api_key())


def _get_client():
    api_key = _api_key()
    if not api_key:
        raise NoticeExtractionError("AI service not configured", code="AI_NOT_CONFIGURED")
    return genai.Client(api_key=api_key)

# =============================================================================
# NORMALIZATION
# =============================================================================

def parse_indian_amount(value) -> Optional[int]:
    """'₹97,06,154/-' -> 9706154. Paise are dropped."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    cleaned = re.sub(r"/-\s*$", "", str(value).strip())
    cleaned = re.sub(r"[^\d.]", "", cleaned).lstrip(".")
    if not cleaned:
        return None
    try:
        return int(float(cleaned))
    except ValueError:
        return None


def parse_notice_date(value) -> Optional[str]:
    """DD/MM/YYYY, DD.MM.YYYY or DD-MM-YYYY to ISO. ISO input passes through."""
    if not value:
        return None
    text = str(value).strip()
    match = DATE_REGEX.match(text)
    try:
        if match:
            day, month, year = (int(g) for g in match.groups())
            return datetime(year, month, day).date().isoformat()
        return datetime.strptime(text[:10], "%Y-%m-%d").date().isoformat()
    except ValueError:
        return None


def is_valid_gstin(gstin: Optional[str]) -> bool:
    return bool(gstin) and bool(GSTIN_REGEX.match(gstin.strip().upper()))


def normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for name, field in (fields or {}).items():
        if isinstance(field, dict):
            out[name] = dict(field)
        else:
            out[name] = {"value": field, "confidence": 0}

    gstin = out.get("gstin")
    if gstin:
        value = (gstin.get("value") or "").strip().upper()
        if is_valid_gstin(value):
            gstin["value"] = value
        else:
            if value:
                logger.info(f"Discarding invalid GSTIN from extraction: {value}")
            gstin["value"] = ""
            gstin["confidence"] = 0

    for name in ("issueDate", "dueDate"):
        if out.get(name) and out[name].get("value"):
            parsed = parse_notice_date(out[name]["value"])
            if parsed:
                out[name]["value"] = parsed

    if out.get("amount") and out["amount"].get("value") not in (None, ""):
        out["amount"]["value"] = parse_indian_amount(out["amount"]["value"])

    return out


def parse_model_output(content: str) -> Dict[str, Any]:
    match = re.search(r"\{[\s\S]*\}", content or "")
    if not match:
        raise NoticeExtractionError("Failed to parse extraction result", code="PARSE_ERROR", raw_text=content)
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        raise NoticeExtractionError("Failed to parse extraction JSON", code="PARSE_ERROR", raw_text=content)

# =============================================================================
# EXTRACTION
# =============================================================================

def _classify_error(e: Exception) -> NoticeExtractionError:
    code = getattr(e, "code", None)
    message = str(e)
    if code == 429 or "429" in message or "RESOURCE_EXHAUSTED" in message:
        return NoticeExtractionError("Rate limit exceeded, please try again later.", code="RATE_LIMIT")
    if code in (401, 403) or "401" in message or "UNAUTHENTICATED" in message:
        return NoticeExtractionError("AI service authentication failed.", code="AUTH_FAILED")
    return NoticeExtractionError(f"AI service error: {message}", code="AI_ERROR")


def count_pdf_pages(pdf_bytes: bytes) -> Optional[int]:
    """Page count of the PDF, or None when it cannot be parsed locally. Gemini still gets the bytes."""
    try:
        return len(PdfReader(io.BytesIO(pdf_bytes)).pages)
    except Exception as e:
        logger.warning(f"Could not read PDF structure: {e}")
        return None


def extract_notice_from_pdf(pdf_base64: Optional[str], filename: Optional[str] = None) -> Dict[str, Any]:
    if not pdf_base64 or not isinstance(pdf_base64, str):
        raise ValueError("No PDF data provided. Expected pdfBase64 string.")
    if len(pdf_base64) < MIN_BASE64_LENGTH:
        raise ValueError("PDF data too small. File may be empty or corrupted.")
    try:
        pdf_bytes = base64.b64decode(pdf_base64.split(",", 1)[-1], validate=False)
    except (binascii.Error, ValueError):
        raise ValueError("PDF data is not valid base64")

    client = _get_client()
    pages = count_pdf_pages(pdf_bytes)
    logger.info(f"Extracting notice {filename or 'unnamed'} ({len(pdf_bytes)} bytes, {pages or '?'} pages) with {MODEL_NAME}")

    try:
        response = client.models.generate_content(
            model=MODEL_NAME,
            contents=[
                types.Part.from_bytes(data=pdf_bytes, mime_type="application/pdf"),
                USER_PROMPT,
            ],
            config=types.GenerateContentConfig(
                temperature=0.1,
                max_output_tokens=4000,
                system_instruction=SYSTEM_PROMPT,
                response_mime_type="application/json",
            ),
        )
    except Exception as e:
        logger.error(f"Gemini extraction failed for {filename or 'unnamed'}: {e}", exc_info=True)
        raise _classify_error(e)

    content = response.text
    if not content:
        raise NoticeExtractionError("No extraction result from AI", code="AI_ERROR")

    parsed = parse_model_output(content)
    fields = normalize_fields(parsed.get("fields") or {})
    logger.info(f"Extraction successful: {sorted(fields)}")
    return {"success": True, "fields": fields, "rawText": parsed.get("rawText", ""), "pageCount": pages}


def extract_and_suggest_deadline(supabase, tenant_id: str, pdf_base64: str, filename: Optional[str] = None) -> Dict[str, Any]:
    result = extract_notice_from_pdf(pdf_base64, filename)
    fields = result["fields"]
    issue_date = (fields.get("issueDate") or {}).get("value")
    result["suggestedDeadline"] = None
    if issue_date and parse_notice_date(issue_date):
        notice_type = (fields.get("noticeType") or {}).get("value")
        deadline = calculate_reply_deadline(supabase, tenant_id, parse_notice_date(issue_date), notice_type)
        result["suggestedDeadline"] = deadline.to_dict()
    return result
