from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from load_hunter.matching.canonical import DEFAULT_VOCABULARY, TypeCanonicalizer, normalize_type


def test_normalize_type_collapses_separators_and_case() -> None:
    assert normalize_type("  large-straight ") == "LARGE STRAIGHT"
    assert normalize_type("Cargo_Van") == "CARGO VAN"
    assert normalize_type("box / truck") == "BOX TRUCK"
    assert normalize_type(None) == ""


def test_unmapped_values_pass_through_normalized() -> None:
    canonicalizer = TypeCanonicalizer()

    assert canonicalizer.canonicalize("large straight") == "LARGE STRAIGHT"
    assert canonicalizer.canonicalize("   ") is None
    assert canonicalizer.vocabulary == DEFAULT_VOCABULARY


def test_mappings_are_applied_after_normalization() -> None:
    canonicalizer = TypeCanonicalizer({"lg-straight": "Large Straight"})

    assert canonicalizer.canonicalize("LG STRAIGHT") == "LARGE STRAIGHT"
    assert canonicalizer.vocabulary == ("LARGE STRAIGHT",)
    assert len(canonicalizer) == 1


def test_accepts_requires_exact_canonical_equality() -> None:
    canonicalizer = TypeCanonicalizer({"26 box": "LARGE STRAIGHT"})

    assert canonicalizer.accepts("26 Box", ["large straight"])
    assert canonicalizer.accepts("Large-Straight", ["LARGE STRAIGHT", "SPRINTER"])
    assert not canonicalizer.accepts("Straight", ["LARGE STRAIGHT"])
    assert not canonicalizer.accepts("reefer", ["LARGE STRAIGHT"])
    assert not canonicalizer.accepts(None, ["LARGE STRAIGHT"])


def test_from_file_reads_dict_and_row_formats(tmp_path: Path) -> None:
    as_dict = tmp_path / "map.json"
    as_dict.write_text(json.dumps({"Lg Straight": "LARGE STRAIGHT"}), encoding="utf-8")
    as_rows = tmp_path / "rows.json"
    as_rows.write_text(
        json.dumps(
            [
                {"original_value": "Sprinter Van", "mapped_to": "SPRINTER"},
                {"original_value": "", "mapped_to": "IGNORED"},
            ]
        ),
        encoding="utf-8",
    )

    assert TypeCanonicalizer.from_file(as_dict).canonicalize("lg straight") == "LARGE STRAIGHT"
    rows = TypeCanonicalizer.from_file(as_rows)
    assert rows.canonicalize("sprinter-van") == "SPRINTER"
    assert len(rows) == 1


def test_from_file_rejects_unknown_shape(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("42", encoding="utf-8")

    with pytest.raises(ValueError):
        TypeCanonicalizer.from_file(path)


def test_from_settings_without_path_uses_passthrough() -> None:
    canonicalizer = TypeCanonicalizer.from_settings(SimpleNamespace(vehicle_type_map_path=None))

    assert len(canonicalizer) == 0
