"""
Prompt text for the downstream AI service and parsing of its responses.
"""

import json
import re
from typing import Any, Dict, List, Optional

DEFAULT_CARD_HEADERS = ["Name", "Company", "Email", "Phone", "Website", "Address"]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def format_card_prompt(raw_text: str, template: Optional[List[str]] = None) -> str:
    header_list = ", ".join(template or DEFAULT_CARD_HEADERS)
    return (
        "You are an AI that converts unstructured text from a business card into structured JSON. "
        f"Use these column names exactly as the JSON keys: {header_list}. "
        'If a value is missing, return it as an empty string "". '
        "Return only valid JSON, with no explanations or markdown. "
        f"Raw text: {raw_text}"
    )


def refine_prompt(raw_text: str) -> str:
    return (
        "You are an OCR text refinement AI. Clean and normalize the following text extracted from an image. "
        "Remove noise, fix spacing and formatting issues, and output only the corrected readable text "
        f"with no extra explanation.\n\nText:\n{raw_text}"
    )


def structure_prompt(cleaned_text: str) -> str:
    return (
        "You are a data structuring AI. Analyze the following extracted text and convert it into "
        "well-structured JSON. Include only meaningful fields like name, address, ID number, date, "
        "card number, etc., based on what appears. Do not invent data. Return valid JSON only, "
        f"with no comments or explanations.\n\nText:\n{cleaned_text}"
    )


def finalize_prompt(structured: Dict[str, Any]) -> str:
    return (
        "You are a validation and cleanup AI. Review this JSON data for consistency and accuracy. "
        "Fix obvious OCR misreads (like wrong date formats or misplaced values), ensure all keys follow "
        f"lower_snake_case, and reformat it neatly as valid JSON.\n\nJSON Input:\n{json.dumps(structured)}"
    )


def build_request_body(prompt: str) -> Dict[str, Any]:
    """Request payload for a generateContent call."""
    return {"contents": [{"parts": [{"text": prompt}]}]}


def extract_candidate_text(response_json: Any) -> str:
    """Text of the first candidate part, or '' when the response has none."""
    try:
        text = response_json["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return ""
    return text if isinstance(text, str) else ""


def extract_json_from_text(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the outermost {...} span of model output into a dict.

    Returns None if there is no such span or it is not a JSON object.
    """
    if not text:
        return None
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
