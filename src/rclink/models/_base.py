"""Base model for rclink wire and event payloads.

Every payload model inherits from :class:`RcBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields serialize to the
  camelCase keys the dashboards read.
* Frozen instances; a changed value means a new model.
* ``to_wire()`` producing the JSON object sent to subscribers.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RcBaseModel(BaseModel):
    """Base for rclink payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """Camel-cased dict, ``None`` fields included."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
