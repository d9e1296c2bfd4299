"""Strict schema baselines with forbidden extras by default."""

from pydantic import BaseModel, ConfigDict


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    # Aliased request fields (e.g. bookingId) are also accepted by their python name
    model_config = ConfigDict(extra="forbid", validate_assignment=True, populate_by_name=True)
