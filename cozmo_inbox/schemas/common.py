from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class EntityModel(BaseModel):
    """Application-level entity: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatchModel(EntityModel):
    """Sparse payload. Only fields the caller set explicitly end up in a row patch."""

    def set_fields(self) -> dict:
        return self.model_dump(exclude_unset=True)
