"""File-based message catalog with in-memory caching."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

LOCALES_PATH = Path(__file__).with_name("locales")


@lru_cache(maxsize=8)
def _load_catalog(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


class I18nService:
    """Look up user-facing texts by key; unknown keys render as the key itself."""

    def __init__(self, *, locales_path: str | Path | None = None, locale: str = "en") -> None:
        self.locales_path = Path(locales_path or LOCALES_PATH)
        self.locale = locale

    def gettext(self, key: str, **kwargs: Any) -> str:
        text = _load_catalog(self.locales_path / f"{self.locale}.json").get(key, key)
        return text.format(**kwargs) if kwargs else text


__all__ = ["I18nService"]
