"""Language codes and display names for subtitle targets."""

from __future__ import annotations

import re
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Languages commonly requested for site-safety talks
LANGUAGE_NAMES: Final[dict[str, str]] = {
    "en": "English",
    "pl": "Polish",
    "ro": "Romanian",
    "pt": "Portuguese",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "ru": "Russian",
    "uk": "Ukrainian",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "bg": "Bulgarian",
    "hu": "Hungarian",
    "cs": "Czech",
    "sk": "Slovak",
    "hr": "Croatian",
    "ga": "Irish",
    "ar": "Arabic",
    "zh": "Chinese",
    "hi": "Hindi",
    "ur": "Urdu",
}

_CODES_BY_NAME: Final[dict[str, str]] = {name.lower(): code for code, name in LANGUAGE_NAMES.items()}

_CODE_RE = re.compile(r"^[a-z]{2,3}(-[a-z]{2,4})?$")


def normalize_language_code(code: str) -> str:
    """Validate and normalise a BCP-47 style language code (``"pt-BR"`` → ``"pt-br"``).

    Raises:
        ValueError: If *code* is not a two/three letter code with an optional region.
    """
    normalized = code.strip().replace("_", "-").lower()
    if not _CODE_RE.match(normalized):
        raise ValueError(f"Invalid language code: {code!r}")
    return normalized


def display_name_for(code: str) -> str:
    """Return the English display name for *code*, or the upper-cased code."""
    normalized = normalize_language_code(code)
    primary = normalized.split("-", 1)[0]
    return LANGUAGE_NAMES.get(normalized, LANGUAGE_NAMES.get(primary, normalized.upper()))


class LanguageSpec(BaseModel):
    """A translation target: validated code plus the name sent to the translator."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Normalised language code, e.g. 'pl'.")
    display_name: str = Field(..., description="Human-readable language name, e.g. 'Polish'.")

    @field_validator("code")
    @classmethod
    def _validate_code(cls, value: str) -> str:
        return normalize_language_code(value)

    @classmethod
    def parse(cls, value: str | LanguageSpec) -> LanguageSpec:
        """Build a spec from a language code (``"pl"``) or a known name (``"Polish"``).

        Raises:
            ValueError: If *value* is neither a known name nor a valid code.
        """
        if isinstance(value, LanguageSpec):
            return value
        code = _CODES_BY_NAME.get(value.strip().lower())
        if code is not None:
            return cls(code=code, display_name=LANGUAGE_NAMES[code])
        return cls(code=value, display_name=display_name_for(value))


def dedupe_languages(
    languages: list[str | LanguageSpec], *, exclude: str | None = None
) -> list[LanguageSpec]:
    """Parse *languages*, dropping duplicates and the *exclude* code, keeping order."""
    excluded = normalize_language_code(exclude) if exclude else None
    seen: set[str] = set()
    specs: list[LanguageSpec] = []
    for value in languages:
        spec = LanguageSpec.parse(value)
        if spec.code == excluded or spec.code in seen:
            continue
        seen.add(spec.code)
        specs.append(spec)
    return specs
