"""Request bodies for the weather-alert API (camelCase on the wire)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerRequest(_Body):
    force_notify: bool = False


class ToggleRequest(_Body):
    enabled: bool


class BulkToggleRequest(_Body):
    event_ids: list[str] = Field(min_length=1)
    enabled: bool
