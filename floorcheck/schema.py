"""Canonical checklist template definition.

Template definitions arrive as JSON (``{"sections": [...]}``) and may use
older field names. They are normalised here, once, into a single item
shape; the validator and the run state machine only ever see the
canonical form.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import TemplateError


class ChecklistType(str, Enum):
    PRE_RUN = "pre_run"
    FIRST_OFF = "first_off"
    SHUTDOWN = "shutdown"
    MAINTENANCE = "maintenance"
    SAFETY = "safety"
    QUALITY = "quality"


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class ItemType(str, Enum):
    YES_NO = "yes_no"
    NUMERIC = "numeric"
    TEXT = "text"


class Frequency(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ComplianceStatus(str, Enum):
    ON_TIME = "on_time"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    IN_PROGRESS = "in_progress"
    NO_SCHEDULE = "no_schedule"


class ChecklistItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    label: str = Field(validation_alias=AliasChoices("label", "question"))
    type: ItemType
    required: bool = True
    critical: bool = False
    photo_required: bool = Field(
        False,
        validation_alias=AliasChoices("photoRequired", "photo_required"),
        serialization_alias="photoRequired",
    )
    hint: Optional[str] = Field(None, validation_alias=AliasChoices("hint", "guidance", "helpText"))
    min_value: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("minValue", "min_value"),
        serialization_alias="minValue",
    )
    max_value: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("maxValue", "max_value"),
        serialization_alias="maxValue",
    )
    unit: Optional[str] = None
    reference_image_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("referenceImageUrl", "reference_image_url"),
        serialization_alias="referenceImageUrl",
    )

    @field_validator("id", "label")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="after")
    def _check_bounds(self):
        # bounds on non-numeric items are carried but never consulted
        if self.type != ItemType.NUMERIC:
            return self
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError(f"minValue {self.min_value} is greater than maxValue {self.max_value}")
        return self


class ChecklistSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    title: str
    description: Optional[str] = None
    items: List[ChecklistItem] = Field(default_factory=list)


class ChecklistDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    sections: List[ChecklistSection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self):
        section_ids = set()
        item_ids = set()
        for section in self.sections:
            if section.id in section_ids:
                raise ValueError(f"duplicate section id {section.id}")
            section_ids.add(section.id)
            for item in section.items:
                if item.id in item_ids:
                    raise ValueError(f"duplicate item id {item.id}")
                item_ids.add(item.id)
        return self

    def iter_items(self):
        for section in self.sections:
            for item in section.items:
                yield section, item

    @property
    def items(self) -> List[ChecklistItem]:
        return [item for _, item in self.iter_items()]

    def item_ids(self) -> List[str]:
        return [item.id for item in self.items]

    def get_item(self, item_id: str) -> Optional[ChecklistItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def section_for(self, item_id: str) -> Optional[ChecklistSection]:
        for section, item in self.iter_items():
            if item.id == item_id:
                return section
        return None

    def is_runnable(self) -> bool:
        """An active template needs at least one section holding at least one item."""
        return any(section.items for section in self.sections)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_definition(
    raw: Union[None, Dict[str, Any], List[Any], ChecklistDefinition],
    template_id: Optional[str] = None,
) -> ChecklistDefinition:
    """Normalise a wire-format definition into a :class:`ChecklistDefinition`.

    Accepts either ``{"sections": [...]}`` or a bare list of sections.
    Raises :class:`TemplateError` when the payload does not describe a
    valid definition.
    """
    if isinstance(raw, ChecklistDefinition):
        return raw
    if raw is None:
        return ChecklistDefinition()
    if isinstance(raw, list):
        raw = {"sections": raw}
    try:
        return ChecklistDefinition.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid definition")
        raise TemplateError(template_id, f"{location}: {message}" if location else message) from e
