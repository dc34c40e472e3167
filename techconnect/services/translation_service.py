"""
Translation Service - English/Urdu dictionary plus dynamic translation

Static UI strings come from ``data/translations.json``, loaded once into a
read-only mapping. Free text goes dictionary -> redis cache -> Google
Translate (when an API key is configured).
"""
import json
import logging
import os
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import requests

from techconnect.core.config import settings
from techconnect.utils.cache import generate_cache_key, get_cached, set_cached

logger = logging.getLogger(__name__)

DATA_FILE = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "translations.json")
DEFAULT_LANG = "en"


class TranslationCatalog:
    """Immutable key -> {lang: text} dictionary."""

    def __init__(self, entries: Mapping[str, Mapping[str, str]]):
        self._entries = MappingProxyType({k: MappingProxyType(dict(v)) for k, v in entries.items()})
        # English text -> key, for translating free text that matches a UI string
        self._by_english = MappingProxyType({
            v[DEFAULT_LANG].strip().lower(): k
            for k, v in entries.items() if v.get(DEFAULT_LANG)
        })

    @classmethod
    def load(cls, path: str = DATA_FILE) -> "TranslationCatalog":
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        catalog = cls(payload["entries"])
        logger.info(f"Loaded {len(catalog)} translation keys from {path}")
        return catalog

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    @property
    def entries(self) -> Mapping[str, Mapping[str, str]]:
        return self._entries

    def translate_key(self, key: str, lang: str = DEFAULT_LANG) -> str:
        """Value for ``lang``, else the English value, else the key itself."""
        entry = self._entries.get(key)
        if entry is None:
            return key
        return entry.get(lang) or entry.get(DEFAULT_LANG) or key

    def lookup_text(self, text: str, lang: str) -> Optional[str]:
        key = self._by_english.get(text.strip().lower())
        if key is None:
            return None
        return self._entries[key].get(lang)


_catalog: Optional[TranslationCatalog] = None


def get_catalog() -> TranslationCatalog:
    global _catalog
    if _catalog is None:
        _catalog = TranslationCatalog.load()
    return _catalog


def translate_key(key: str, lang: str = DEFAULT_LANG) -> str:
    return get_catalog().translate_key(key, lang)


def google_translate_configured() -> bool:
    return bool(settings.GOOGLE_TRANSLATE_API_KEY)


def _google_translate(text: str, target_lang: str) -> str:
    response = requests.post(
        settings.GOOGLE_TRANSLATE_URL,
        params={"key": settings.GOOGLE_TRANSLATE_API_KEY},
        json={"q": text, "target": target_lang, "format": "text"},
        timeout=10,
    )
    response.raise_for_status()
    return response.json()["data"]["translations"][0]["translatedText"]


def translate_text(text: str, target_lang: str = "ur") -> Dict[str, str]:
    """
    Translate free text.

    ``source`` in the result is one of dictionary, cache, google, none
    (no API key) or error (API call failed); in the last two cases the
    original text is returned unchanged.
    """
    result = {"original": text, "translated": text, "target_lang": target_lang, "source": "none"}

    if target_lang == DEFAULT_LANG:
        result["source"] = "dictionary"
        return result

    hit = get_catalog().lookup_text(text, target_lang)
    if hit:
        result.update(translated=hit, source="dictionary")
        return result

    cache_key = generate_cache_key("translate", target_lang, text)
    cached = get_cached(cache_key)
    if cached:
        result.update(translated=cached, source="cache")
        return result

    if not google_translate_configured():
        logger.debug("Google Translate API key not configured")
        return result

    try:
        translated = _google_translate(text, target_lang)
    except (requests.RequestException, KeyError, IndexError, ValueError) as e:
        logger.error(f"Google Translate call failed: {e}")
        result["source"] = "error"
        return result

    set_cached(cache_key, translated, settings.TRANSLATION_CACHE_TTL)
    result.update(translated=translated, source="google")
    return result
