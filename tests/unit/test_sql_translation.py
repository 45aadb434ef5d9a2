"""
Unit tests for PostgreSQL rendering of filters, updates and sorts.
"""

from datetime import datetime, timezone

import pytest

from hubdb.backends.schema import ARRAY_COLUMNS, FIELD_TO_COLUMN, INTEGER_COLUMNS
from hubdb.exceptions import TranslationError
from hubdb.query import SQLTranslator, parse_filter, parse_update, quote_identifier


@pytest.fixture
def translator() -> SQLTranslator:
    return SQLTranslator(FIELD_TO_COLUMN, INTEGER_COLUMNS, ARRAY_COLUMNS)


class TestWhere:
    """Test WHERE rendering."""

    def test_empty_filter(self, translator):
        """Test an empty filter renders as TRUE with no parameters."""
        fragment = translator.where(parse_filter({}))
        assert fragment.text == "TRUE"
        assert fragment.values == ()

    def test_equality_with_field_mapping(self, translator):
        """Test document fields are renamed to columns."""
        fragment = translator.where(parse_filter({"userId": "7", "apiKey": "k"}))
        assert fragment.text == "(user_id = $1) AND (api_key = $2)"
        assert fragment.values == (7, "k")

    def test_identity_digit_string_coerced(self, translator):
        """Test '_id' maps to id and digit strings become integers."""
        fragment = translator.where(parse_filter({"_id": "42"}))
        assert fragment.text == "id = $1"
        assert fragment.values == (42,)

    def test_identity_non_digit_string_rejected(self, translator):
        """Test a non-numeric identity string cannot address an integer key."""
        with pytest.raises(TranslationError):
            translator.where(parse_filter({"_id": "abc"}))

    def test_null_equality(self, translator):
        """Test equality to None renders IS NULL."""
        assert translator.where(parse_filter({"api_key": None})).text == "api_key IS NULL"

    def test_in(self, translator):
        """Test $in renders = ANY with one array parameter."""
        fragment = translator.where(parse_filter({"id": {"$in": ["1", 2]}}))
        assert fragment.text == "id = ANY($1)"
        assert fragment.values == ([1, 2],)

    def test_in_with_null(self, translator):
        """Test None inside $in adds an IS NULL branch."""
        fragment = translator.where(parse_filter({"status": {"$in": ["active", None]}}))
        assert fragment.text == "(status = ANY($1) OR status IS NULL)"
        assert fragment.values == (["active"],)

    def test_empty_in(self, translator):
        """Test an empty $in matches nothing."""
        assert translator.where(parse_filter({"status": {"$in": []}})).text == "FALSE"

    def test_regex_case_insensitive(self, translator):
        """Test the 'i' option selects ~*."""
        fragment = translator.where(parse_filter({"username": {"$regex": "^al", "$options": "i"}}))
        assert fragment.text == "username::text ~* $1"
        assert fragment.values == ("(?p)^al",)

    def test_regex_multiline_uses_embedded_option(self, translator):
        """Test the 'm' option becomes an embedded newline-sensitive flag."""
        fragment = translator.where(parse_filter({"content": {"$regex": "^x", "$options": "m"}}))
        assert fragment.text == "content::text ~ $1"
        assert fragment.values == ("(?n)^x",)

    @pytest.mark.parametrize(
        "options, prefix",
        [("", "(?p)"), ("m", "(?n)"), ("s", ""), ("ms", "(?w)"), ("sx", "(?x)"), ("ix", "(?px)")],
    )
    def test_regex_newline_handling_follows_python(self, translator, options, prefix):
        """Test "." and anchors treat newlines as Python's re does for each flag set."""
        fragment = translator.where(parse_filter({"content": {"$regex": "a.b", "$options": options}}))
        assert fragment.values == (f"{prefix}a.b",)

    def test_regex_on_array_column(self, translator):
        """Test $regex on an array column matches any element."""
        fragment = translator.where(parse_filter({"tags": {"$regex": "py"}}))
        assert fragment.text == (
            "EXISTS (SELECT 1 FROM unnest(tags) AS element WHERE element ~ $1)"
        )

    def test_or_and_numbering(self, translator):
        """Test placeholders are numbered across nested expressions."""
        fragment = translator.where(
            parse_filter({"status": "active", "$or": [{"ownerId": "1"}, {"name": "Room"}]}),
            start=3,
        )
        assert fragment.text == "(status = $3) AND (((owner_id = $4) OR (name = $5)))"
        assert fragment.values == ("active", 1, "Room")

    def test_naive_datetime_becomes_utc(self, translator):
        """Test naive datetimes are sent as UTC."""
        fragment = translator.where(parse_filter({"created": datetime(2024, 1, 1)}))
        assert fragment.text == "created_at = $1"
        assert fragment.values == (datetime(2024, 1, 1, tzinfo=timezone.utc),)

    def test_invalid_column_name_rejected(self, translator):
        """Test field names that are not identifiers never reach the SQL text."""
        with pytest.raises(TranslationError):
            translator.where(parse_filter({"name; DROP TABLE users": 1}))


class TestAssignments:
    """Test SET rendering."""

    def test_all_operators(self, translator):
        """Test each operator's SQL form in application order."""
        plan = parse_update(
            {
                "$inc": {"views": 1},
                "$pull": {"participants": "bob"},
                "$push": {"tags": "python"},
                "$set": {"lastActive": "now"},
            }
        )
        fragment = translator.assignments(plan)
        assert fragment.text == (
            "last_active = $1, "
            "tags = array_append(COALESCE(tags, '{}'), $2), "
            "participants = array_remove(participants, $3), "
            "views = COALESCE(views, 0) + $4"
        )
        assert fragment.values == ("now", "python", "bob", 1)

    def test_start_offset(self, translator):
        """Test numbering starts at the given offset."""
        fragment = translator.assignments(parse_update({"$set": {"name": "x"}}), start=5)
        assert fragment.text == "name = $5"


class TestOrderBy:
    """Test ORDER BY rendering."""

    def test_directions_and_tiebreaker(self, translator):
        """Test null placement per direction and the id tiebreaker."""
        assert translator.order_by([("created", -1), ("name", 1)]) == (
            "created_at DESC NULLS LAST, name ASC NULLS FIRST, id ASC"
        )

    def test_no_sort_orders_by_id(self, translator):
        """Test an empty sort still orders by id."""
        assert translator.order_by([]) == "id ASC"

    def test_identity_sort_has_no_extra_tiebreaker(self, translator):
        """Test sorting on _id does not repeat the id column."""
        assert translator.order_by([("_id", -1)]) == "id DESC NULLS LAST"


class TestCreateIndex:
    """Test CREATE INDEX rendering."""

    def test_unique_sparse(self, translator):
        """Test unique and sparse options."""
        statement = translator.create_index(
            "users", [("apiKey", 1)], "idx_users_api_key", unique=True, sparse=True
        )
        assert statement == (
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_api_key ON users (api_key) "
            "WHERE api_key IS NOT NULL"
        )

    def test_descending(self, translator):
        """Test descending keys."""
        statement = translator.create_index("projects", [("created", -1)], "idx_p")
        assert statement == "CREATE INDEX IF NOT EXISTS idx_p ON projects (created_at DESC)"

    def test_invalid_name_rejected(self, translator):
        """Test index names must be identifiers."""
        with pytest.raises(TranslationError):
            translator.create_index("projects", [("created", -1)], "created_-1")


def test_quote_identifier():
    """Test identifier validation."""
    assert quote_identifier("users") == "users"
    with pytest.raises(TranslationError):
        quote_identifier("users;--")
