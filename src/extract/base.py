"""Narrow interfaces to the non-critical collaborators around the pipeline.

Extraction turns free text into candidate CIL fields, category suggestion
labels a transaction, vendor normalization cleans up store names. None of
them may block or fail a write: callers go through the fail-open helpers.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import structlog

logger = structlog.get_logger()


class Extractor(ABC):
    @abstractmethod
    async def extract(self, text: str, type_hint: str | None = None) -> dict[str, Any] | None:
        """Return candidate CIL fields (with ``type``) or None if not recognized."""
        ...


class ChainExtractor(Extractor):
    """Try each extractor in order; the first non-null answer wins."""

    def __init__(self, extractors: list[Extractor]) -> None:
        self._extractors = extractors

    async def extract(self, text: str, type_hint: str | None = None) -> dict[str, Any] | None:
        partial: dict[str, Any] | None = None
        for extractor in self._extractors:
            try:
                fields = await extractor.extract(text, type_hint)
            except Exception:
                logger.exception("extractor_failed", extractor=type(extractor).__name__)
                continue
            if not fields:
                continue
            if len(fields) > 1:
                return fields
            # Only the command type was recognized; a later extractor may do better.
            partial = partial or fields
        return partial


class CategorySuggester(ABC):
    @abstractmethod
    async def suggest(self, kind: str, fields: dict[str, Any]) -> str | None: ...


class NoopCategorySuggester(CategorySuggester):
    async def suggest(self, kind: str, fields: dict[str, Any]) -> str | None:
        return None


async def suggest_category_fail_open(
    suggester: CategorySuggester,
    kind: str,
    fields: dict[str, Any],
    *,
    timeout_s: float,
) -> str | None:
    """Ask for a category within ``timeout_s``. Never raises."""
    try:
        return await asyncio.wait_for(suggester.suggest(kind, fields), timeout=timeout_s)
    except TimeoutError:
        logger.warning("category_suggest_timeout", kind=kind, timeout_s=timeout_s)
    except Exception as e:
        logger.warning("category_suggest_failed", kind=kind, error_type=type(e).__name__)
    return None


class VendorNormalizer(ABC):
    @abstractmethod
    def normalize(self, vendor: str | None) -> str | None: ...
