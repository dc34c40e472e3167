from pydantic import BaseModel, Field, validator

SUPPORTED_LANGUAGES = ["en", "ur"]


class TranslateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    target_lang: str = "ur"

    @validator("target_lang")
    def lang_supported(cls, v):
        if v not in SUPPORTED_LANGUAGES:
            raise ValueError(f"target_lang must be one of {SUPPORTED_LANGUAGES}")
        return v


class TranslateResponse(BaseModel):
    original: str
    translated: str
    target_lang: str
    source: str  # dictionary, cache, google, none, error


class TranslationKeyOut(BaseModel):
    key: str
    lang: str
    value: str
