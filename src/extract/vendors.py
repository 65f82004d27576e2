from __future__ import annotations

import re

from src.extract.base import VendorNormalizer

DEFAULT_ALIASES: dict[str, str] = {
    "home depot": "Home Depot",
    "the home depot": "Home Depot",
    "homedepot": "Home Depot",
    "convoy supply": "Convoy Supply",
    "convoy": "Convoy Supply",
    "rona": "RONA",
    "lowes": "Lowe's",
    "lowe's": "Lowe's",
    "lowe’s": "Lowe's",
    "gentek": "Gentek",
    "gentech": "Gentek",
}

_STORE_NUMBER = re.compile(r"\s+#\d+$")
_CORPORATE_SUFFIX = re.compile(r"\s+(inc|ltd|limited)\.?$", re.IGNORECASE)


class AliasVendorNormalizer(VendorNormalizer):
    """Collapse store-name variants ("the home depot #123") to one canonical name."""

    def __init__(self, aliases: dict[str, str] | None = None) -> None:
        self._aliases = {k.lower(): v for k, v in (aliases or DEFAULT_ALIASES).items()}

    def normalize(self, vendor: str | None) -> str | None:
        name = " ".join((vendor or "").split())
        if not name:
            return None
        name = _STORE_NUMBER.sub("", name)
        name = _CORPORATE_SUFFIX.sub("", name).strip()
        return self._aliases.get(name.lower(), name)


class PassthroughVendorNormalizer(VendorNormalizer):
    """Whitespace cleanup only; the vendor keeps the spelling the owner used."""

    def normalize(self, vendor: str | None) -> str | None:
        return " ".join((vendor or "").split()) or None
