"""Field type registry: value domains, comparison and cross-type coercion."""

import math
import re
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

from app.core.automation.errors import CoercionError, TypeMismatchError
from app.schemas.workspace import FieldDefinition, FieldType


TEXT_LIKE = frozenset({FieldType.TEXT, FieldType.EMAIL, FieldType.PHONE, FieldType.LINK})
ORDINAL = frozenset({FieldType.NUMBER, FieldType.DATE, FieldType.DATETIME})
SELECT = frozenset({FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT})

_INTEGER_RE = re.compile(r"^[+-]?\d+$")

Coercion = Callable[[Any, FieldDefinition, FieldDefinition], Any]


def _parse_number(text: str) -> int | float:
    text = text.strip()
    if _INTEGER_RE.match(text):
        return int(text)
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {text!r}")
    return number


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        raise ValueError("expected a date, got a datetime")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"expected an ISO date, got {type(value).__name__}")


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"expected an ISO datetime, got {type(value).__name__}")
    # Naive datetimes are stored as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _translate_option(
    option_id: Any, source: FieldDefinition, target: FieldDefinition
) -> str:
    """Map an option id of ``source`` onto the option of ``target`` with the same label."""
    if not isinstance(option_id, str):
        raise CoercionError(f"option id must be a string, got {type(option_id).__name__}")
    target_options = target.options or {}
    if option_id in target_options:
        return option_id
    label = source.option_label(option_id)
    if label is not None:
        translated = target.option_id_for_label(label)
        if translated is not None:
            return translated
    raise CoercionError(
        f"option {option_id!r} of field {source.id!r} has no counterpart in field {target.id!r}"
    )


def _identity(value: Any, source: FieldDefinition, target: FieldDefinition) -> Any:
    if source.type == FieldType.SINGLE_SELECT:
        return _translate_option(value, source, target)
    if source.type == FieldType.MULTI_SELECT:
        if not isinstance(value, list):
            raise CoercionError("multi select value must be a list of option ids")
        return [_translate_option(option_id, source, target) for option_id in value]
    return value


def _pass_through(value: Any, source: FieldDefinition, target: FieldDefinition) -> Any:
    if not isinstance(value, str):
        raise CoercionError(f"expected text, got {type(value).__name__}")
    return value


def _number_to_text(value: Any, source: FieldDefinition, target: FieldDefinition) -> str:
    if not _is_number(value):
        raise CoercionError(f"expected a number, got {type(value).__name__}")
    return str(value)


def _text_to_number(value: Any, source: FieldDefinition, target: FieldDefinition) -> int | float:
    if not isinstance(value, str):
        raise CoercionError(f"expected text, got {type(value).__name__}")
    try:
        return _parse_number(value)
    except ValueError as e:
        raise CoercionError(f"text {value!r} is not a number") from e


def _date_to_datetime(value: Any, source: FieldDefinition, target: FieldDefinition) -> str:
    try:
        parsed = _parse_date(value)
    except ValueError as e:
        raise CoercionError(str(e)) from e
    return datetime(parsed.year, parsed.month, parsed.day).isoformat()


def _datetime_to_date(value: Any, source: FieldDefinition, target: FieldDefinition) -> str:
    # Truncate in the value's own timezone
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise CoercionError(str(e)) from e
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise CoercionError(f"expected an ISO datetime, got {type(value).__name__}")
    return parsed.date().isoformat()


def _single_to_multi(value: Any, source: FieldDefinition, target: FieldDefinition) -> list[str]:
    return [_translate_option(value, source, target)]


def _checkbox_to_text(value: Any, source: FieldDefinition, target: FieldDefinition) -> str:
    if not isinstance(value, bool):
        raise CoercionError(f"expected a boolean, got {type(value).__name__}")
    return "true" if value else "false"


_CROSS_TYPE_COERCIONS: dict[tuple[FieldType, FieldType], Coercion] = {
    (FieldType.TEXT, FieldType.EMAIL): _pass_through,
    (FieldType.TEXT, FieldType.PHONE): _pass_through,
    (FieldType.TEXT, FieldType.LINK): _pass_through,
    (FieldType.TEXT, FieldType.NUMBER): _text_to_number,
    (FieldType.NUMBER, FieldType.TEXT): _number_to_text,
    (FieldType.DATE, FieldType.DATETIME): _date_to_datetime,
    (FieldType.DATETIME, FieldType.DATE): _datetime_to_date,
    (FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT): _single_to_multi,
    (FieldType.CHECKBOX, FieldType.TEXT): _checkbox_to_text,
}

_DEFAULTS: dict[FieldType, Any] = {
    FieldType.TEXT: "",
    FieldType.EMAIL: "",
    FieldType.PHONE: "",
    FieldType.LINK: "",
    FieldType.NUMBER: 0,
    FieldType.CHECKBOX: False,
    FieldType.DATE: None,
    FieldType.DATETIME: None,
    FieldType.SINGLE_SELECT: None,
    FieldType.MULTI_SELECT: [],
}


class FieldTypeRegistry:
    """Describes each field type's value domain, ordering and coercions."""

    def can_coerce(self, source_type: FieldType, target_type: FieldType) -> bool:
        """Return True if values of ``source_type`` may be mapped onto ``target_type``."""
        return source_type == target_type or (source_type, target_type) in _CROSS_TYPE_COERCIONS

    def coerce(self, value: Any, source: FieldDefinition, target: FieldDefinition) -> Any:
        """Convert a value of field ``source`` into the shape of field ``target``.

        Raises:
            CoercionError: If the pair is not coercible or the value is invalid
        """
        if value is None:
            return None
        if source.type == target.type:
            return _identity(value, source, target)
        coercion = _CROSS_TYPE_COERCIONS.get((source.type, target.type))
        if coercion is None:
            raise CoercionError(
                f"cannot coerce {source.type.value} to {target.type.value}"
            )
        return coercion(value, source, target)

    def is_ordinal(self, field_type: FieldType) -> bool:
        return field_type in ORDINAL

    def default_value(self, field_type: FieldType) -> Any:
        """Value given to unmapped fields of a newly created record."""
        default = _DEFAULTS[field_type]
        return list(default) if isinstance(default, list) else default

    def normalize(self, field: FieldDefinition, value: Any) -> Any:
        """Turn a stored value into a comparable Python value.

        Raises:
            TypeMismatchError: If the value does not belong to the field's domain
        """
        if value is None:
            return None
        try:
            match field.type:
                case FieldType.TEXT | FieldType.EMAIL | FieldType.PHONE | FieldType.LINK:
                    if not isinstance(value, str):
                        raise ValueError(f"expected text, got {type(value).__name__}")
                    return value
                case FieldType.NUMBER:
                    if not _is_number(value):
                        raise ValueError(f"expected a number, got {type(value).__name__}")
                    return value
                case FieldType.DATE:
                    return _parse_date(value)
                case FieldType.DATETIME:
                    return _parse_datetime(value)
                case FieldType.SINGLE_SELECT:
                    if not isinstance(value, str):
                        raise ValueError("expected an option id")
                    return value
                case FieldType.MULTI_SELECT:
                    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                        raise ValueError("expected a list of option ids")
                    return frozenset(value)
                case FieldType.CHECKBOX:
                    if not isinstance(value, bool):
                        raise ValueError(f"expected a boolean, got {type(value).__name__}")
                    return value
        except ValueError as e:
            raise TypeMismatchError(
                f"value {value!r} is invalid for {field.type.value} field {field.id!r}: {e}",
                details={"field_id": field.id, "field_type": field.type.value},
            ) from e
        raise TypeMismatchError(f"unsupported field type {field.type!r}")

    def parse_literal(self, field: FieldDefinition, literal: Any) -> Any:
        """Parse a configured literal (condition or visibility value) into the stored shape.

        Select literals accept an option id or an option label. Numbers,
        dates and checkboxes accept their textual form.

        Raises:
            TypeMismatchError: If the literal cannot be read in the field's domain
        """
        if literal is None or literal == "":
            return None
        try:
            match field.type:
                case FieldType.TEXT | FieldType.EMAIL | FieldType.PHONE | FieldType.LINK:
                    if not isinstance(literal, str):
                        raise ValueError(f"expected text, got {type(literal).__name__}")
                    return literal
                case FieldType.NUMBER:
                    if _is_number(literal):
                        return literal
                    if isinstance(literal, str):
                        return _parse_number(literal)
                    raise ValueError(f"expected a number, got {type(literal).__name__}")
                case FieldType.DATE:
                    return _parse_date(literal).isoformat()
                case FieldType.DATETIME:
                    return _parse_datetime(literal).isoformat()
                case FieldType.SINGLE_SELECT:
                    return self._resolve_option(field, literal)
                case FieldType.MULTI_SELECT:
                    items = literal if isinstance(literal, list) else [literal]
                    return [self._resolve_option(field, item) for item in items]
                case FieldType.CHECKBOX:
                    if isinstance(literal, bool):
                        return literal
                    if isinstance(literal, str) and literal.strip().lower() in ("true", "false"):
                        return literal.strip().lower() == "true"
                    raise ValueError("expected true or false")
        except ValueError as e:
            raise TypeMismatchError(
                f"literal {literal!r} is invalid for {field.type.value} field {field.id!r}: {e}",
                details={"field_id": field.id, "field_type": field.type.value},
            ) from e
        raise TypeMismatchError(f"unsupported field type {field.type!r}")

    @staticmethod
    def _resolve_option(field: FieldDefinition, literal: Any) -> str:
        if not isinstance(literal, str):
            raise ValueError("expected an option id or label")
        if literal in (field.options or {}):
            return literal
        option_id = field.option_id_for_label(literal)
        if option_id is None:
            raise ValueError(f"unknown option {literal!r}")
        return option_id


registry = FieldTypeRegistry()
