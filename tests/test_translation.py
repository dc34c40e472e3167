from unittest.mock import MagicMock

import pytest
import requests

from techconnect.core.config import settings
from techconnect.services import translation_service
from techconnect.services.translation_service import TranslationCatalog, get_catalog, translate_text
from techconnect.utils.cache import generate_cache_key


@pytest.fixture
def catalog():
    return TranslationCatalog({
        "home": {"en": "Home", "ur": "ہوم"},
        "onlyEnglish": {"en": "Pricing"},
    })


def test_translate_key_fallbacks(catalog):
    assert catalog.translate_key("home", "ur") == "ہوم"
    assert catalog.translate_key("onlyEnglish", "ur") == "Pricing"
    assert catalog.translate_key("missing", "ur") == "missing"


def test_catalog_is_read_only(catalog):
    with pytest.raises(TypeError):
        catalog.entries["home"] = {"en": "Start"}
    with pytest.raises(TypeError):
        catalog.entries["home"]["ur"] = "x"


def test_bundled_catalog_loads():
    bundled = get_catalog()
    assert "home" in bundled
    assert bundled.translate_key("home", "ur") == "ہوم"


def test_dictionary_match_is_case_insensitive():
    result = translate_text("  home ", "ur")
    assert result["source"] == "dictionary"
    assert result["translated"] == "ہوم"


def test_english_target_returns_text():
    assert translate_text("Anything at all", "en")["translated"] == "Anything at all"


def test_no_api_key_returns_original(monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_TRANSLATE_API_KEY", "")
    result = translate_text("We build mobile apps", "ur")
    assert result == {
        "original": "We build mobile apps",
        "translated": "We build mobile apps",
        "target_lang": "ur",
        "source": "none",
    }


def test_google_result_is_cached(monkeypatch, fake_redis):
    monkeypatch.setattr(settings, "GOOGLE_TRANSLATE_API_KEY", "test-key")
    response = MagicMock()
    response.json.return_value = {"data": {"translations": [{"translatedText": "ہم ایپس بناتے ہیں"}]}}
    post = MagicMock(return_value=response)
    monkeypatch.setattr(translation_service.requests, "post", post)

    first = translate_text("We build apps", "ur")
    second = translate_text("We build apps", "ur")

    assert first["source"] == "google"
    assert second["source"] == "cache"
    assert second["translated"] == "ہم ایپس بناتے ہیں"
    assert post.call_count == 1
    assert generate_cache_key("translate", "ur", "We build apps") in fake_redis.store


def test_google_failure_falls_back(monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_TRANSLATE_API_KEY", "test-key")
    post = MagicMock(side_effect=requests.ConnectionError("offline"))
    monkeypatch.setattr(translation_service.requests, "post", post)

    result = translate_text("Quarterly report", "ur")
    assert result["source"] == "error"
    assert result["translated"] == "Quarterly report"
