"""Modelo de dominio para lecturas de sensores / lectores RFID.

La lectura es inmutable una vez creada. El parsing de payloads crudos se hace
con pydantic (ReadingPayload) y luego se convierte al dataclass de dominio.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Claves del sobre; todo lo demás a nivel raíz se considera un campo de valores
ENVELOPE_KEYS = {
    "stream_id", "streamId",
    "tag_id", "tagId",
    "timestamp", "ts",
    "location",
    "values",
    "msg_id", "msgId",
}


@dataclass(frozen=True)
class Location:
    """Ubicación de una lectura: zona con nombre y/o coordenadas."""
    name: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def to_dict(self) -> dict:
        return {"name": self.name, "lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class Reading:
    """Lectura canónica que fluye por el motor.

    Validador → ventanas → scoring / drift
    """
    stream_id: str
    timestamp: datetime
    values: Mapping[str, Any] = field(default_factory=dict)
    tag_id: Optional[str] = None
    location: Optional[Location] = None

    def __post_init__(self):
        # Congelar el mapping de valores para que la lectura sea inmutable
        if not isinstance(self.values, MappingProxyType):
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def epoch(self) -> float:
        """Timestamp como float Unix epoch."""
        return self.timestamp.timestamp()

    def to_dict(self) -> dict:
        return {
            "stream_id": self.stream_id,
            "tag_id": self.tag_id,
            "timestamp": self.timestamp.isoformat(),
            "values": dict(self.values),
            "location": self.location.to_dict() if self.location else None,
        }


class LocationPayload(BaseModel):
    name: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)


class ReadingPayload(BaseModel):
    """Schema del sobre de una lectura cruda.

    Formato esperado:
    {
        "streamId": "reader-07",
        "tagId": "E200-3412-0001",
        "timestamp": "2026-01-31T08:00:00.123456Z",
        "location": {"name": "dock-2", "lat": 19.07, "lon": 72.87},
        "values": {"temperature": 23.4, "signal_strength": 71}
    }
    """

    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(..., alias="streamId")
    tag_id: Optional[str] = Field(default=None, alias="tagId")
    timestamp: datetime
    location: Optional[Union[str, LocationPayload]] = None
    values: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fold_top_level_values(cls, data: Any) -> Any:
        """Mueve campos escalares de nivel raíz a ``values``."""
        if not isinstance(data, Mapping):
            raise TypeError(f"reading must be a mapping, got {type(data).__name__}")
        data = dict(data)
        if "timestamp" not in data and "ts" in data:
            data["timestamp"] = data.pop("ts")
        values = data.get("values")
        if values is None:
            values = {}
        elif not isinstance(values, Mapping):
            raise TypeError("values must be a mapping")
        values = dict(values)
        for key in list(data.keys()):
            if key not in ENVELOPE_KEYS:
                values[key] = data.pop(key)
        data["values"] = values
        return data

    @field_validator("stream_id")
    @classmethod
    def validate_stream_id(cls, v):
        if not v or not v.strip():
            raise ValueError("streamId is required")
        return v.strip()

    @field_validator("tag_id", mode="before")
    @classmethod
    def coerce_tag_id(cls, v):
        if v is None:
            return None
        if isinstance(v, (int, str)) and not isinstance(v, bool):
            v = str(v).strip()
            return v or None
        raise ValueError("tagId must be a string")

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        if isinstance(v, bool):
            raise ValueError("timestamp must not be a boolean")
        if isinstance(v, (int, float)):
            if not math.isfinite(v):
                raise ValueError("timestamp is not finite")
            return datetime.fromtimestamp(v, tz=timezone.utc)
        if isinstance(v, str):
            return datetime.fromisoformat(v.strip().replace("Z", "+00:00"))
        return v

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def to_reading(self) -> Reading:
        location = None
        if isinstance(self.location, str):
            location = Location(name=self.location.strip() or None)
        elif self.location is not None:
            location = Location(
                name=self.location.name,
                lat=self.location.lat,
                lon=self.location.lon,
            )
        return Reading(
            stream_id=self.stream_id,
            timestamp=self.timestamp,
            values=self.values,
            tag_id=self.tag_id,
            location=location,
        )


def parse_reading(data: Any) -> Reading:
    """Convierte un payload crudo (o una Reading) al modelo de dominio.

    Raises:
        ValueError / TypeError: si el payload no tiene la forma esperada.
            (pydantic.ValidationError es subclase de ValueError)
    """
    if isinstance(data, Reading):
        return data
    return ReadingPayload.model_validate(data).to_reading()
