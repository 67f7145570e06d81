"""Descriptor de schema explícito para los campos de una lectura.

Cada campo se describe con un tag de tipo, nullabilidad y rango opcional.
La comprobación es estructural sobre el tag, no por introspección dinámica.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from ..errors import ConfigurationError


class FieldType(str, Enum):
    """Tags de tipo soportados."""
    FLOAT = "float"
    INT = "int"
    STRING = "string"
    BOOL = "bool"

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.FLOAT, FieldType.INT)


class FieldSpec(BaseModel):
    """Especificación de un campo: tipo, nullable y rango [min, max]."""

    model_config = ConfigDict(frozen=True)

    type: FieldType = FieldType.FLOAT
    nullable: bool = False
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_bounds(self):
        for bound in (self.min, self.max):
            if bound is not None and not math.isfinite(bound):
                raise ValueError("range bounds must be finite")
        if (self.min is not None or self.max is not None) and not self.type.is_numeric:
            raise ValueError(f"range bounds only apply to numeric fields, not {self.type.value}")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) > max ({self.max})")
        return self

    def matches_type(self, value: Any) -> bool:
        """Verifica el valor contra el tag de tipo (bool nunca cuenta como número)."""
        if isinstance(value, bool):
            return self.type == FieldType.BOOL
        if self.type == FieldType.FLOAT:
            return isinstance(value, (int, float)) and math.isfinite(value)
        if self.type == FieldType.INT:
            if isinstance(value, float):
                return math.isfinite(value) and value.is_integer()
            return isinstance(value, int)
        if self.type == FieldType.STRING:
            return isinstance(value, str)
        return False

    def in_range(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


class SchemaDescriptor:
    """Schema de un stream: nombre de campo → FieldSpec."""

    def __init__(self, fields: Mapping[str, FieldSpec]):
        if not fields:
            raise ConfigurationError("schema must declare at least one field", option="schema")
        self._fields: Dict[str, FieldSpec] = dict(fields)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaDescriptor":
        """Construye el schema desde un dict (p. ej. cargado de JSON).

        Formato:
        {
            "temperature": {"type": "float", "min": -40, "max": 125},
            "signal_strength": {"type": "float", "min": 0, "max": 100},
            "zone": {"type": "string", "nullable": true}
        }
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError("schema must be a mapping", option="schema")
        fields = {}
        for name, spec in data.items():
            try:
                fields[str(name)] = spec if isinstance(spec, FieldSpec) else FieldSpec.model_validate(spec)
            except ValidationError as e:
                raise ConfigurationError(str(e), option=f"schema.{name}") from e
        return cls(fields)

    @property
    def fields(self) -> Dict[str, FieldSpec]:
        return dict(self._fields)

    @property
    def numeric_fields(self) -> Tuple[str, ...]:
        return tuple(name for name, spec in self._fields.items() if spec.type.is_numeric)

    def get(self, name: str) -> Optional[FieldSpec]:
        return self._fields.get(name)

    def with_ranges(self, ranges: Mapping[str, Tuple[float, float]]) -> "SchemaDescriptor":
        """Devuelve un schema nuevo con los rangos por campo sobrescritos."""
        fields = dict(self._fields)
        for name, (lo, hi) in ranges.items():
            base = fields.get(name)
            if base is None:
                raise ConfigurationError(f"range given for unknown field '{name}'", option="ranges")
            try:
                fields[name] = FieldSpec(type=base.type, nullable=base.nullable, min=lo, max=hi)
            except ValidationError as e:
                raise ConfigurationError(str(e), option=f"ranges.{name}") from e
        return SchemaDescriptor(fields)

    def to_dict(self) -> dict:
        return {name: spec.model_dump(mode="json") for name, spec in self._fields.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)
