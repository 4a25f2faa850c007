"""
Response-side language selection.

Catalog documents store display text as ``{"en": ..., "ar": ...}``. Public
responses collapse each such mapping to a single string. Prices and other
non-text values pass through untouched.
"""
from typing import Any, Optional

SUPPORTED_LANGUAGES = ("en", "ar")


def parse_language(accept_language: Optional[str]) -> str:
    """First tag of an Accept-Language header, e.g. ``ar-EG,ar;q=0.9`` -> ``ar``."""
    if not accept_language:
        return "en"
    tag = accept_language.split(",")[0].split(";")[0].strip().lower()
    tag = tag.split("-")[0]
    return tag if tag in SUPPORTED_LANGUAGES else "en"


def select_language(doc: Any, lang: str) -> Any:
    if isinstance(doc, list):
        return [select_language(item, lang) for item in doc]
    if not isinstance(doc, dict):
        return doc

    selected = {}
    for key, value in doc.items():
        if isinstance(value, dict) and ("en" in value or "ar" in value):
            selected[key] = value.get(lang) or value.get("en") or value.get("ar") or ""
        else:
            selected[key] = select_language(value, lang)
    return selected
