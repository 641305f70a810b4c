"""Field mapper projecting record values across field schemas."""

import logging
from collections.abc import Sequence
from typing import Any

from app.core.automation.errors import CoercionError, FieldMappingError
from app.core.automation.field_types import FieldTypeRegistry, registry
from app.schemas.automation import FieldMappingSchema
from app.schemas.workspace import FieldDefinition

logger = logging.getLogger(__name__)


class FieldMapper:
    """Projects values from a source record onto a target table's fields."""

    def __init__(self, field_registry: FieldTypeRegistry | None = None):
        self.registry = field_registry or registry

    def project(
        self,
        source_values: dict[str, Any],
        mappings: Sequence[FieldMappingSchema],
        source_fields: dict[str, FieldDefinition],
        target_fields: dict[str, FieldDefinition],
        for_create: bool = False,
    ) -> dict[str, Any]:
        """Project source values through the declared mappings.

        The projection is atomic: the first failing mapping raises and no
        partial result is returned.

        Args:
            source_values: Values of the source record keyed by field id
            mappings: Declared field mappings, applied in order
            source_fields: Fields of the source table keyed by id
            target_fields: Fields of the target table keyed by id
            for_create: Fill unmapped target fields with their type default

        Returns:
            Target values keyed by target field id

        Raises:
            FieldMappingError: If a mapping references an unknown field, pairs
                incompatible types or its value cannot be coerced
        """
        projected: dict[str, Any] = {}
        if for_create:
            projected = {
                field_id: self.registry.default_value(field.type)
                for field_id, field in target_fields.items()
            }

        for index, mapping in enumerate(mappings):
            source, target = self._resolve(index, mapping, source_fields, target_fields)
            try:
                projected[target.id] = self.registry.coerce(
                    source_values.get(source.id), source, target
                )
            except CoercionError as e:
                raise FieldMappingError(
                    f"Mapping #{index} ({source.id} -> {target.id}) failed: {e.message}",
                    mapping_index=index,
                    source_field_id=source.id,
                    target_field_id=target.id,
                ) from e

        logger.debug(f"Projected {len(mappings)} mapping(s) onto {len(projected)} field(s)")
        return projected

    def validate(
        self,
        mappings: Sequence[FieldMappingSchema],
        source_fields: dict[str, FieldDefinition],
        target_fields: dict[str, FieldDefinition],
        require_inverse: bool = False,
    ) -> None:
        """Check mappings statically, without values.

        Args:
            require_inverse: Also require every mapping to be coercible in the
                opposite direction (two-way sync)

        Raises:
            FieldMappingError: On the first invalid mapping
        """
        for index, mapping in enumerate(mappings):
            source, target = self._resolve(index, mapping, source_fields, target_fields)
            if require_inverse and not self.registry.can_coerce(target.type, source.type):
                raise FieldMappingError(
                    f"Mapping #{index} cannot be inverted for two-way sync: "
                    f"{target.type.value} does not coerce to {source.type.value}",
                    mapping_index=index,
                    source_field_id=source.id,
                    target_field_id=target.id,
                )

    @staticmethod
    def invert(mappings: Sequence[FieldMappingSchema]) -> list[FieldMappingSchema]:
        """Swap source and target of every mapping."""
        return [
            FieldMappingSchema(
                source_field_id=m.target_field_id, target_field_id=m.source_field_id
            )
            for m in mappings
        ]

    def _resolve(
        self,
        index: int,
        mapping: FieldMappingSchema,
        source_fields: dict[str, FieldDefinition],
        target_fields: dict[str, FieldDefinition],
    ) -> tuple[FieldDefinition, FieldDefinition]:
        source = source_fields.get(mapping.source_field_id)
        target = target_fields.get(mapping.target_field_id)
        if source is None or target is None:
            missing = mapping.source_field_id if source is None else mapping.target_field_id
            raise FieldMappingError(
                f"Mapping #{index} references unknown field {missing!r}",
                mapping_index=index,
                source_field_id=mapping.source_field_id,
                target_field_id=mapping.target_field_id,
            )
        if not self.registry.can_coerce(source.type, target.type):
            raise FieldMappingError(
                f"Mapping #{index} pairs incompatible types: "
                f"{source.type.value} -> {target.type.value}",
                mapping_index=index,
                source_field_id=source.id,
                target_field_id=target.id,
            )
        return source, target
