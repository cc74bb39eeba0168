"""Unit tests for SQL identifier quoting."""

import pytest

from utils import qualified_table, quote_identifier, safe_identifier


def test_safe_identifier_quotes_mixed_case() -> None:
    assert safe_identifier("LinkIDProject") == '"LinkIDProject"'
    assert safe_identifier("public.Locations") == '"public"."Locations"'


def test_safe_identifier_rejects_injection() -> None:
    with pytest.raises(ValueError, match="Invalid SQL identifier"):
        safe_identifier("Parts; DROP TABLE x")


def test_qualified_table() -> None:
    assert qualified_table("archive", "Parts") == '"archive"."Parts"'


@pytest.mark.parametrize(
    "name,expected",
    [
        ("ID", '"ID"'),
        ("Unit Price", '"Unit Price"'),
        ("Qty#", '"Qty#"'),
        ('Say "hi"', '"Say ""hi"""'),
    ],
)
def test_quote_identifier_accepts_catalog_names(name: str, expected: str) -> None:
    assert quote_identifier(name) == expected


@pytest.mark.parametrize("name", ["", "bad\x00name"])
def test_quote_identifier_rejects_unusable_names(name: str) -> None:
    with pytest.raises(ValueError, match="Invalid SQL identifier"):
        quote_identifier(name)
