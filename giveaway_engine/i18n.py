"""Locale loading and message lookup for giveaway texts."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

log = logging.getLogger(__name__)

LOCALES_DIR = Path(__file__).with_name("locales")
DEFAULT_LANGUAGE = "en"


def available_languages() -> Tuple[str, ...]:
    return tuple(sorted(path.stem for path in LOCALES_DIR.glob("*.yaml")))


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    flat: Dict[str, str] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, full_key))
        else:
            flat[full_key] = str(value)
    return flat


@lru_cache(maxsize=None)
def _load_locale(language: str) -> Dict[str, str]:
    path = LOCALES_DIR / f"{language}.yaml"
    if not path.exists():
        raise ValueError(f"Unsupported language: {language}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Locale file {path} must contain a mapping at the root.")
    return _flatten(data)


class Translator:
    """Maps message keys to text in one language, falling back to English."""

    def __init__(self, language: str = DEFAULT_LANGUAGE) -> None:
        self.language = language
        self._messages = _load_locale(language)
        self._fallback = (
            self._messages
            if language == DEFAULT_LANGUAGE
            else _load_locale(DEFAULT_LANGUAGE)
        )

    def translate(self, key: str, **params: Any) -> str:
        template = self._messages.get(key)
        if template is None:
            template = self._fallback.get(key)
        if template is None:
            log.debug("Missing translation for key %s (%s)", key, self.language)
            return key
        return template.format(**params)

    __call__ = translate
