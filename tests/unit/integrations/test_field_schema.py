"""
Unit tests for field schemas (config_schema and credential_schema).
"""
import pytest

from app.core.exceptions import SchemaValidationError
from app.integrations.field_schema import (
    ListField,
    MapField,
    NumberField,
    StringField,
    parse_credential_schema,
    parse_fields,
    validate_values,
)
from app.models.enums import AuthType


class TestParseFields:
    """Parsing {name: spec} mappings into tagged field specs."""

    def test_every_field_type(self):
        fields = parse_fields({
            "title": {"type": "string", "max": 40},
            "count": {"type": "number", "min": 1},
            "enabled": {"type": "boolean"},
            "feed_url": {"type": "url", "required": True},
            "accent": {"type": "color"},
            "tags": {"type": "list", "items": "string"},
            "location": {"type": "map", "schema": {"lat": "number", "lon": "number"}},
            "calendar": {"type": "ref", "collection": "calendars"},
        })

        assert isinstance(fields["title"], StringField)
        assert isinstance(fields["count"], NumberField)
        assert isinstance(fields["tags"], ListField)
        assert isinstance(fields["location"], MapField)
        assert fields["feed_url"].required is True

    def test_bare_type_shorthand(self):
        fields = parse_fields({"title": "string"})

        assert isinstance(fields["title"], StringField)

    def test_unknown_field_type_rejected(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            parse_fields({"when": {"type": "datetime"}})

        assert exc_info.value.errors

    def test_unknown_nested_type_rejected(self):
        with pytest.raises(SchemaValidationError):
            parse_fields({"tags": {"type": "list", "items": {"type": "uuid"}}})

    def test_unexpected_key_rejected(self):
        with pytest.raises(SchemaValidationError):
            parse_fields({"title": {"type": "string", "maxLength": 10}})

    def test_default_must_match_type(self):
        with pytest.raises(SchemaValidationError, match="default value does not match"):
            parse_fields({"count": {"type": "number", "default": "ten"}})

    def test_ref_requires_collection(self):
        with pytest.raises(SchemaValidationError):
            parse_fields({"calendar": {"type": "ref"}})

    def test_none_is_empty(self):
        assert parse_fields(None) == {}

    def test_non_object_rejected(self):
        with pytest.raises(SchemaValidationError, match="must be an object"):
            parse_fields(["title"])


class TestValidateValues:
    """Validating option and credential values against parsed specs."""

    def setup_method(self):
        self.fields = parse_fields({
            "feed_url": {"type": "url", "required": True},
            "max_items": {"type": "number", "default": 10, "min": 1, "max": 50},
            "accent": {"type": "color"},
            "symbols": {"type": "list", "items": "string", "max": 3},
            "location": {"type": "map", "schema": {"lat": {"type": "number", "required": True}}},
        })

    def test_defaults_applied(self):
        values = validate_values(self.fields, {"feed_url": "https://example.com/feed.xml"})

        assert values["max_items"] == 10

    def test_undeclared_keys_pass_through(self):
        values = validate_values(self.fields, {"feed_url": "https://example.com/rss", "theme": "dark"})

        assert values["theme"] == "dark"

    def test_required_missing(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_values(self.fields, {})

        assert exc_info.value.errors == ["feed_url: field is required"]

    @pytest.mark.parametrize("values", [
        {"feed_url": "ftp://example.com"},
        {"feed_url": "https://example.com", "max_items": 0},
        {"feed_url": "https://example.com", "max_items": True},
        {"feed_url": "https://example.com", "accent": "blue"},
        {"feed_url": "https://example.com", "symbols": ["A", "B", "C", "D"]},
        {"feed_url": "https://example.com", "symbols": ["A", 1]},
        {"feed_url": "https://example.com", "location": {}},
    ])
    def test_invalid_values(self, values):
        with pytest.raises(SchemaValidationError):
            validate_values(self.fields, values)

    def test_colors(self):
        for color in ("#fff", "#A1B2C3", "rgb(1, 2, 3)", "rgba(1,2,3,0.5)"):
            assert validate_values(self.fields, {"feed_url": "https://a.io", "accent": color})["accent"] == color

    def test_one_error_per_field(self):
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_values(self.fields, {"feed_url": "nope", "max_items": 99})

        assert len(exc_info.value.errors) == 2

    def test_string_enum(self):
        fields = parse_fields({"unit": {"type": "string", "enum": ["C", "F"]}})

        assert validate_values(fields, {"unit": "C"}) == {"unit": "C"}
        with pytest.raises(SchemaValidationError, match="must be one of"):
            validate_values(fields, {"unit": "K"})

    def test_values_must_be_object(self):
        with pytest.raises(SchemaValidationError, match="Values must be an object"):
            validate_values(self.fields, ["https://example.com"])


class TestCredentialSchema:
    def test_default_is_no_auth(self):
        schema = parse_credential_schema(None)

        assert schema.auth_type == AuthType.NONE
        assert schema.fields == {}

    def test_api_key_schema(self):
        schema = parse_credential_schema({
            "auth_type": "api_key",
            "fields": {"api_key": {"type": "string", "required": True, "sensitive": True}},
        })

        assert schema.auth_type == AuthType.API_KEY
        assert schema.fields["api_key"].sensitive

    def test_oauth2_requires_block(self):
        with pytest.raises(SchemaValidationError, match="requires an oauth2 block"):
            parse_credential_schema({"auth_type": "oauth2"})

    def test_oauth2_block(self):
        schema = parse_credential_schema({
            "auth_type": "oauth2",
            "oauth2": {
                "authorization_url": "https://auth.example.com/authorize",
                "token_url": "https://auth.example.com/token",
                "scopes": ["read"],
                "client_auth": "post",
            },
        })

        assert schema.oauth2.client_auth == "post"
        assert schema.oauth2.scopes == ["read"]

    def test_unknown_auth_type(self):
        with pytest.raises(SchemaValidationError):
            parse_credential_schema({"auth_type": "kerberos"})

    def test_unknown_field_type(self):
        with pytest.raises(SchemaValidationError):
            parse_credential_schema({"auth_type": "api_key", "fields": {"api_key": {"type": "secret"}}})
