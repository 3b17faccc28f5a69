"""
Free-text translation for user content (review comments, bios)

English targets are returned untouched. A failed translation falls back to
the original text so callers can always render something.
"""
import logging
from typing import Any, Dict, List, Optional

from deep_translator import GoogleTranslator

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "es"

# UI language codes -> translator language codes
TARGET_LANGUAGES = {
    "es": "es",
    "es-ES": "es",
    "pt": "pt",
    "pt-BR": "pt",
    "en": "en",
    "en-US": "en",
}

ENGLISH = ("en", "en-US")


def translate_text(text: Optional[str], target_lang: str = DEFAULT_TARGET) -> Optional[str]:
    if not text or target_lang in ENGLISH:
        return text
    target = TARGET_LANGUAGES.get(target_lang, DEFAULT_TARGET)
    try:
        translated = GoogleTranslator(source="auto", target=target).translate(text)
    except Exception as e:
        logger.warning("Translation to %s failed, keeping original text: %s", target, e)
        return text
    return translated or text


def translate_fields(obj: Optional[Dict[str, Any]], fields: List[str], target_lang: str = DEFAULT_TARGET) -> Optional[Dict[str, Any]]:
    """Return a copy of ``obj`` with the named string fields translated."""
    if not obj or target_lang in ENGLISH:
        return obj
    translated = dict(obj)
    for field in fields:
        value = translated.get(field)
        if value and isinstance(value, str):
            translated[field] = translate_text(value, target_lang)
    return translated
