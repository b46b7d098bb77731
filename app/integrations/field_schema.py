"""
Field schema taxonomy for credential and widget option schemas.

A schema is a mapping of field name to FieldSpec. FieldSpec is a tagged union
over a closed set of types; the ``type`` key selects the variant and an
unknown type string is rejected when the schema is parsed. Every variant
knows how to validate a value of its type, and validate_values() drives them
over a whole mapping (required/default handling).

A bare type name is accepted as shorthand: ``{"city": "string"}`` is the same
as ``{"city": {"type": "string"}}``.
"""
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from app.core.exceptions import SchemaValidationError
from app.models.enums import AuthType

FIELD_TYPES = ("string", "number", "boolean", "url", "color", "list", "map", "ref")

_URL_RE = re.compile(r"^https?://[^\s$.?#].[^\s]*$", re.IGNORECASE)
_HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3}|[A-Fa-f0-9]{8})$")
_RGB_COLOR_RE = re.compile(r"^rgba?\s*\(\s*\d+\s*,\s*\d+\s*,\s*\d+\s*(,\s*[\d.]+\s*)?\)$")


class FieldValueError(ValueError):
    """A single value failed validation against its FieldSpec."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


def _normalize_spec(raw: Any) -> Any:
    """Expand the bare-type shorthand into a spec mapping."""
    if isinstance(raw, str):
        return {"type": raw}
    return raw


class _FieldBase(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    required: bool = False
    default: Any = None
    description: Optional[str] = None
    help: Optional[str] = None
    placeholder: Optional[str] = None
    order: Optional[int] = None
    # Rendered as a password input; never echoed back
    sensitive: bool = False

    def validate_value(self, value: Any, path: str = "") -> Any:
        raise NotImplementedError

    @model_validator(mode="after")
    def check_default(self):
        if self.default is not None:
            try:
                self.validate_value(self.default, "default")
            except FieldValueError as e:
                raise ValueError(f"default value does not match field type: {e}")
        return self


class StringField(_FieldBase):
    type: Literal["string"]
    min: Optional[int] = Field(default=None, ge=0, description="Minimum length")
    max: Optional[int] = Field(default=None, ge=0, description="Maximum length")
    enum: Optional[List[str]] = None

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, str):
            raise FieldValueError(path, "expected a string")
        if self.min is not None and len(value) < self.min:
            raise FieldValueError(path, f"must be at least {self.min} characters")
        if self.max is not None and len(value) > self.max:
            raise FieldValueError(path, f"must be at most {self.max} characters")
        if self.enum is not None and value not in self.enum:
            raise FieldValueError(path, f"must be one of {self.enum}")
        return value


class NumberField(_FieldBase):
    type: Literal["number"]
    min: Optional[float] = None
    max: Optional[float] = None

    def validate_value(self, value: Any, path: str = "") -> Any:
        # bool is an int subclass in Python
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FieldValueError(path, "expected a number")
        if self.min is not None and value < self.min:
            raise FieldValueError(path, f"is less than the minimum value {self.min}")
        if self.max is not None and value > self.max:
            raise FieldValueError(path, f"is greater than the maximum value {self.max}")
        return value


class BooleanField(_FieldBase):
    type: Literal["boolean"]

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, bool):
            raise FieldValueError(path, "expected a boolean")
        return value


class UrlField(_FieldBase):
    type: Literal["url"]

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, str) or not _URL_RE.match(value):
            raise FieldValueError(path, "expected an http(s) URL")
        return value


class ColorField(_FieldBase):
    type: Literal["color"]

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, str) or not (_HEX_COLOR_RE.match(value) or _RGB_COLOR_RE.match(value)):
            raise FieldValueError(path, "expected a color like #RRGGBB or rgb(r, g, b)")
        return value


class RefField(_FieldBase):
    """Reference to a resource in another collection, by id."""
    type: Literal["ref"]
    collection: str

    def validate_value(self, value: Any, path: str = "") -> Any:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise FieldValueError(path, f"expected a {self.collection} id")
        return value


class ListField(_FieldBase):
    type: Literal["list"]
    items: "FieldSpec"
    min: Optional[int] = Field(default=None, ge=0, description="Minimum item count")
    max: Optional[int] = Field(default=None, ge=0, description="Maximum item count")

    @field_validator("items", mode="before")
    @classmethod
    def expand_items(cls, v):
        return _normalize_spec(v)

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, list):
            raise FieldValueError(path, "expected a list")
        if self.min is not None and len(value) < self.min:
            raise FieldValueError(path, f"must contain at least {self.min} items")
        if self.max is not None and len(value) > self.max:
            raise FieldValueError(path, f"must contain at most {self.max} items")
        return [self.items.validate_value(item, f"{path}[{i}]") for i, item in enumerate(value)]


class MapField(_FieldBase):
    type: Literal["map"]
    fields: Dict[str, "FieldSpec"] = Field(alias="schema")

    @field_validator("fields", mode="before")
    @classmethod
    def expand_fields(cls, v):
        if isinstance(v, dict):
            return {name: _normalize_spec(spec) for name, spec in v.items()}
        return v

    def validate_value(self, value: Any, path: str = "") -> Any:
        if not isinstance(value, dict):
            raise FieldValueError(path, "expected an object")
        result, errors = _validate_mapping(self.fields, value, prefix=path)
        if errors:
            raise FieldValueError("", "; ".join(errors))
        return result


FieldSpec = Annotated[
    Union[StringField, NumberField, BooleanField, UrlField, ColorField, ListField, MapField, RefField],
    Field(discriminator="type"),
]

ListField.model_rebuild()
MapField.model_rebuild()

_fields_adapter = TypeAdapter(Dict[str, FieldSpec])


def _format_errors(exc: ValidationError) -> List[str]:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return messages


def parse_fields(raw: Optional[Dict[str, Any]]) -> Dict[str, FieldSpec]:
    """
    Parse a {name: spec} mapping.

    Raises:
        SchemaValidationError: On unknown field types, unexpected keys, or
            defaults that do not match their type
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SchemaValidationError("Schema must be an object mapping field names to specs")
    normalized = {name: _normalize_spec(spec) for name, spec in raw.items()}
    try:
        return _fields_adapter.validate_python(normalized)
    except ValidationError as e:
        errors = _format_errors(e)
        raise SchemaValidationError(f"Invalid schema: {'; '.join(errors)}", errors=errors) from e


def _validate_mapping(
    fields: Dict[str, FieldSpec],
    values: Dict[str, Any],
    prefix: str = "",
) -> tuple[Dict[str, Any], List[str]]:
    result = dict(values)
    errors: List[str] = []
    for name, spec in fields.items():
        path = f"{prefix}.{name}" if prefix else name
        value = values.get(name)
        if value is None:
            if spec.default is not None:
                result[name] = spec.default
            elif spec.required:
                errors.append(f"{path}: field is required")
            continue
        try:
            result[name] = spec.validate_value(value, path)
        except FieldValueError as e:
            errors.append(str(e))
    return result, errors


def validate_values(fields: Dict[str, FieldSpec], values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate values against parsed field specs.

    Missing fields take their default; missing required fields are errors.
    Keys not declared in the schema pass through unchanged.

    Raises:
        SchemaValidationError: With one message per failing field
    """
    if values is None:
        values = {}
    if not isinstance(values, dict):
        raise SchemaValidationError("Values must be an object")
    result, errors = _validate_mapping(fields, values)
    if errors:
        raise SchemaValidationError(f"Validation failed: {'; '.join(errors)}", errors=errors)
    return result


# ============================================================================
# Credential schema
# ============================================================================

class OAuth2Config(BaseModel):
    """OAuth 2.0 authorization-code settings for an integration."""
    model_config = ConfigDict(extra="forbid")

    authorization_url: str
    token_url: str
    scopes: List[str] = Field(default_factory=list)
    client_auth: Literal["basic", "post"] = "basic"
    refresh_margin_seconds: Optional[int] = Field(default=None, ge=0)
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)


class CredentialSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    auth_type: AuthType = AuthType.NONE
    fields: Dict[str, FieldSpec] = Field(default_factory=dict)
    oauth2: Optional[OAuth2Config] = None

    @field_validator("fields", mode="before")
    @classmethod
    def expand_fields(cls, v):
        if isinstance(v, dict):
            return {name: _normalize_spec(spec) for name, spec in v.items()}
        return v

    @model_validator(mode="after")
    def require_oauth2_block(self):
        if self.auth_type == AuthType.OAUTH2 and self.oauth2 is None:
            raise ValueError("auth_type 'oauth2' requires an oauth2 block")
        return self


def parse_credential_schema(raw: Optional[Dict[str, Any]]) -> CredentialSchema:
    """
    Parse a credential schema.

    Raises:
        SchemaValidationError: On unknown auth types or field types
    """
    try:
        return CredentialSchema.model_validate(raw or {})
    except ValidationError as e:
        errors = _format_errors(e)
        raise SchemaValidationError(f"Invalid credential schema: {'; '.join(errors)}", errors=errors) from e
