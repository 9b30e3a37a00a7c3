"""
Vehicle-type canonicalization.

Postings carry whatever equipment text the load board used ("Lg Straight",
"large-straight", "26' BOX"). Operators configure a mapping from those raw
values to a small canonical vocabulary; hunts store canonical types only.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

from load_hunter.config import Settings
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_VOCABULARY: Tuple[str, ...] = (
    "CARGO VAN",
    "FLATBED",
    "LARGE STRAIGHT",
    "SMALL STRAIGHT",
    "SPRINTER",
    "STRAIGHT",
)

_SEPARATORS = re.compile(r"[-_/]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_type(text: Optional[str]) -> str:
    """Upper-case, separators as spaces, whitespace collapsed."""
    if not text:
        return ""
    spaced = _SEPARATORS.sub(" ", text)
    return _WHITESPACE.sub(" ", spaced).strip().upper()


class TypeCanonicalizer:
    """
    Map raw vehicle-type strings onto the canonical vocabulary.

    Unmapped values pass through normalized, so a posting that already uses a
    canonical name needs no mapping entry.
    """

    def __init__(self, mappings: Optional[Mapping[str, str]] = None) -> None:
        self._mappings: Dict[str, str] = {}
        for raw, canonical in (mappings or {}).items():
            key, value = normalize_type(raw), normalize_type(canonical)
            if key and value:
                self._mappings[key] = value

    @classmethod
    def from_file(cls, path: Path | str) -> "TypeCanonicalizer":
        """
        Load mappings from JSON: either ``{"raw": "CANONICAL"}`` or a list of
        ``{"original_value": ..., "mapped_to": ...}`` rows.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return cls(data)
        if isinstance(data, list):
            pairs = {
                row["original_value"]: row["mapped_to"]
                for row in data
                if isinstance(row, dict) and row.get("original_value") and row.get("mapped_to")
            }
            return cls(pairs)
        raise ValueError(f"Unsupported vehicle type map format in {path}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TypeCanonicalizer":
        if not settings.vehicle_type_map_path:
            return cls()
        canonicalizer = cls.from_file(settings.vehicle_type_map_path)
        log.info(
            "[TYPE MAP] loaded",
            extra={"path": settings.vehicle_type_map_path, "entries": len(canonicalizer)},
        )
        return canonicalizer

    @property
    def vocabulary(self) -> Tuple[str, ...]:
        mapped = tuple(sorted(set(self._mappings.values())))
        return mapped or DEFAULT_VOCABULARY

    def canonicalize(self, text: Optional[str]) -> Optional[str]:
        key = normalize_type(text)
        if not key:
            return None
        return self._mappings.get(key, key)

    def accepts(self, posting_type: Optional[str], accepted: Iterable[str]) -> bool:
        canonical = self.canonicalize(posting_type)
        if canonical is None:
            return False
        return any(canonical == normalize_type(candidate) for candidate in accepted)

    def __len__(self) -> int:
        return len(self._mappings)


__all__ = ["DEFAULT_VOCABULARY", "TypeCanonicalizer", "normalize_type"]
