"""Base model and shared configuration for pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class VodSpineModel(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )


__all__ = ["VodSpineModel"]
