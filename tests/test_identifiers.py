"""Tests for identifier validation and quoting."""

import pytest

from duckdb_featureserv.data.errors import InvalidIdentifier
from duckdb_featureserv.data.identifiers import (
    is_valid_identifier,
    quote_identifier,
    quote_qualified,
)


class TestQuoteIdentifier:
    def test_plain_name(self):
        assert quote_identifier("name") == '"name"'

    def test_dollar_and_digits(self):
        assert quote_identifier("col_1$x") == '"col_1$x"'

    @pytest.mark.parametrize("name", ["1abc", "a-b", "a b", 'a"b', "", "name;drop"])
    def test_rejects_untrusted_names(self, name):
        with pytest.raises(InvalidIdentifier):
            quote_identifier(name)

    def test_trusted_name_doubles_quotes(self):
        assert quote_identifier('we"ird name', trusted=True) == '"we""ird name"'

    def test_trusted_empty_name_rejected(self):
        with pytest.raises(InvalidIdentifier):
            quote_identifier("", trusted=True)

    def test_qualified(self):
        assert quote_qualified("public", "parks") == '"public"."parks"'

    def test_is_valid_identifier(self):
        assert is_valid_identifier("_x")
        assert not is_valid_identifier("x.y")
        assert not is_valid_identifier(None)
