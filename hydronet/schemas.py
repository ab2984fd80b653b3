"""Pydantic models for scheme FeatureCollections returned by the backend."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Geometry(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    coordinates: List[Any] = Field(default_factory=list)


class SchemeFeature(BaseModel):
    """One object of a scheme. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    type: Literal["Feature"] = "Feature"
    id: Optional[int] = None
    name_object_type: str
    geometry: Optional[Geometry] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _null_properties(cls, value):
        return {} if value is None else value

    @property
    def is_point(self) -> bool:
        return (
            self.geometry is not None
            and self.geometry.type == "Point"
            and len(self.geometry.coordinates) >= 2
        )

    @property
    def is_line(self) -> bool:
        return (
            self.geometry is not None
            and self.geometry.type == "LineString"
            and len(self.geometry.coordinates) >= 2
        )


class SchemeFeatureCollection(BaseModel):
    """Envelope only; features are validated one by one so a bad record can be skipped."""
    model_config = ConfigDict(extra="allow")

    type: Literal["FeatureCollection"] = "FeatureCollection"
    id_scheme: Optional[int] = None
    features: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("features", mode="before")
    @classmethod
    def _null_features(cls, value):
        return [] if value is None else value
