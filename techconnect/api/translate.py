from fastapi import APIRouter, HTTPException

from techconnect.schemas.translation import (
    SUPPORTED_LANGUAGES, TranslateRequest, TranslateResponse, TranslationKeyOut,
)
from techconnect.services import translation_service
from techconnect.utils.cache import redis_health_check

router = APIRouter(prefix="/translate", tags=["translate"])


@router.post("/", response_model=TranslateResponse)
def translate(payload: TranslateRequest):
    """Translate free text (dictionary, then cache, then Google)"""
    return translation_service.translate_text(payload.text, payload.target_lang)


@router.get("/health")
def translation_health():
    catalog = translation_service.get_catalog()
    return {
        "dictionary_keys": len(catalog),
        "languages": SUPPORTED_LANGUAGES,
        "google_configured": translation_service.google_translate_configured(),
        "cache_available": redis_health_check(),
    }


@router.get("/keys/{key}", response_model=TranslationKeyOut)
def translate_key(key: str, lang: str = "ur"):
    if lang not in SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail=f"lang must be one of {SUPPORTED_LANGUAGES}")
    return {"key": key, "lang": lang, "value": translation_service.translate_key(key, lang)}


@router.get("/dictionary/{lang}")
def dictionary(lang: str):
    """Every UI string in one language, for the client bundle"""
    if lang not in SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail=f"lang must be one of {SUPPORTED_LANGUAGES}")
    catalog = translation_service.get_catalog()
    return {key: catalog.translate_key(key, lang) for key in catalog.entries}
