"""Canonical records for patches handed over by the feature-extraction side.

These pydantic models validate JSON/CSV rows before they become ``Patch``
objects. Feature values may be NaN; the controller decides what to do with
those.
"""
from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional, Union

from patch_retrieval.data.patch import Feature, Label, Patch


class FeatureRecord(BaseModel):
    name: str = Field(min_length=1)
    value: float


class PatchRecord(BaseModel):
    patch_id: Union[int, str]
    features: List[FeatureRecord] = Field(min_length=1)
    label: Optional[Union[int, str]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('features')
    @classmethod
    def unique_names(cls, v: List[FeatureRecord]) -> List[FeatureRecord]:
        names = [f.name for f in v]
        if len(set(names)) != len(names):
            raise ValueError('feature names must be unique within a patch')
        return v

    @field_validator('label')
    @classmethod
    def known_label(cls, v):
        Label.parse(v)
        return v

    def to_patch(self) -> Patch:
        return Patch(
            self.patch_id,
            [Feature(f.name, f.value) for f in self.features],
            label=Label.parse(self.label),
            meta=dict(self.meta),
        )


__all__ = ['FeatureRecord', 'PatchRecord']
