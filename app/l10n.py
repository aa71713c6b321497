"""Localized bot texts loaded once at startup."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from app.logging_config import get_logger

logger = get_logger("l10n")

DEFAULT_LOCALES_DIR = Path(__file__).parent / "locales"
DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = ("en", "ru")


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def format_message(template: str, **params) -> str:
    """Substitute ``{name}`` placeholders, leaving unknown ones untouched."""
    return template.format_map(_SafeFormat(params))


def locale_for_country(country_code: Optional[str]) -> str:
    if country_code and country_code.upper() == "RU":
        return "ru"
    return DEFAULT_LOCALE


@dataclass(frozen=True)
class LocaleCatalog:
    bundles: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    @classmethod
    def load(cls, directory: Optional[Path] = None) -> "LocaleCatalog":
        directory = Path(directory) if directory else DEFAULT_LOCALES_DIR
        bundles: dict[str, Mapping[str, str]] = {}
        for code in SUPPORTED_LOCALES:
            path = directory / f"{code}.json"
            if not path.exists():
                logger.warning("Locale bundle missing", extra={"context": {"path": str(path)}})
                continue
            data = json.loads(path.read_text(encoding="utf-8"))
            bundles[code] = MappingProxyType(dict(data.get("bot", {})))
        if DEFAULT_LOCALE not in bundles:
            raise RuntimeError(f"Default locale bundle not found in {directory}")
        logger.info("Locales loaded", extra={"context": {"locales": sorted(bundles)}})
        return cls(bundles=MappingProxyType(bundles))

    def text(self, locale: str, key: str, **params) -> str:
        bundle = self.bundles.get(locale) or self.bundles[DEFAULT_LOCALE]
        template = bundle.get(key)
        if template is None:
            template = self.bundles[DEFAULT_LOCALE].get(key, key)
        return format_message(template, **params)

    def for_country(self, country_code: Optional[str], key: str, **params) -> str:
        return self.text(locale_for_country(country_code), key, **params)
