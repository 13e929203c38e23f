"""
GrowSync Backend - Property Mapper
===================================

What:  Translates flat writeback / history field dicts into the record
       store's typed property payloads.
How:   Two steps, both pure:
         1. Build a flat {property name: plain value} dict for the record variant
            (photo = primary record, history = one record per natural key).
         2. Coerce every present value through the variant's schema into a
            typed property (rich text, title, number, checkbox, select, status,
            date, relation). Unknown names fall back to coercion by runtime type.
Who:   Batch orchestrator, once per job and variant.

Shape of the output (Notion property values):
    {"AI Summary":   {"rich_text": [{"type": "text", "text": {"content": "..."}}]},
     "Health 0-100": {"number": 82},
     "Trend":        {"select": {"name": "Stable"}},
     "Related Photo": {"relation": [{"id": "1234...cdef"}]}}

None never reaches the output, so the store never receives explicit nulls.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from growsync.exceptions import PropertyMappingError
from growsync.schemas.analyze import Job, Writeback
from growsync.services.identifiers import extract_record_id

# Notion rejects rich text content longer than this per text object.
MAX_TEXT_LENGTH = 2000

NAME_SEPARATOR = " - "
NEXT_STEP_FIELD = "AI Next Step"
NEXT_STEP_SELECT_FIELD = "AI Next Step (sel)"
REVIEWED_STATUS = "Reviewed"
COMPLETE_STATUS = "Complete"


class PropertyKind(str, Enum):
    RICH_TEXT = "rich_text"
    TITLE = "title"
    NUMBER = "number"
    CHECKBOX = "checkbox"
    SELECT = "select"
    STATUS = "status"
    DATE = "date"
    RELATION = "relation"


K = PropertyKind

PHOTO_SCHEMA: Dict[str, PropertyKind] = {
    "AI Summary": K.RICH_TEXT,
    NEXT_STEP_FIELD: K.RICH_TEXT,
    NEXT_STEP_SELECT_FIELD: K.SELECT,
    "Trend": K.SELECT,
    "Sev": K.SELECT,
    "Health 0-100": K.NUMBER,
    "DLI mol": K.NUMBER,
    "VPD kPa": K.NUMBER,
    "VPD OK": K.CHECKBOX,
    "DLI OK": K.CHECKBOX,
    "CO2 OK": K.CHECKBOX,
    "Reviewed at": K.DATE,
    "AI Status": K.STATUS,
}

HISTORY_SCHEMA: Dict[str, PropertyKind] = {
    "Name": K.TITLE,
    "Date": K.DATE,
    "Related Photo": K.RELATION,
    "Related Log Entry": K.RELATION,
    "userDefined:ID": K.RICH_TEXT,
    "AI Summary": K.RICH_TEXT,
    "Health 0-100": K.NUMBER,
    "DLI mol": K.NUMBER,
    "VPD kPa": K.NUMBER,
    "VPD OK": K.CHECKBOX,
    "DLI OK": K.CHECKBOX,
    "CO2 OK": K.CHECKBOX,
    "Sev": K.SELECT,
    "Status": K.STATUS,
    "Idempotency Key": K.RICH_TEXT,
}

# Writeback fields copied onto the history record.
HISTORY_WRITEBACK_FIELDS = (
    "AI Summary", "Health 0-100", "DLI mol", "VPD kPa",
    "VPD OK", "DLI OK", "CO2 OK", "Sev",
)


@dataclass(frozen=True)
class MappingContext:
    """Job context the mapper needs besides the writeback itself."""

    record_url: str
    date: str
    plant_id: Optional[str] = None
    angle: Optional[str] = None
    log_entry_url: Optional[str] = None
    reviewed_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job, reviewed_at: Optional[str] = None) -> "MappingContext":
        return cls(
            record_url=job.photo_page_url,
            date=job.date,
            plant_id=job.plant_id,
            angle=job.angle,
            log_entry_url=job.log_entry_url,
            reviewed_at=reviewed_at,
        )


# ══════════════════════════════════════════════════════════════════════════
# Typed property builders
# ══════════════════════════════════════════════════════════════════════════


def rich_text(content: str) -> Dict[str, Any]:
    return {"rich_text": [{"type": "text", "text": {"content": content[:MAX_TEXT_LENGTH]}}]}


def title(content: str) -> Dict[str, Any]:
    return {"title": [{"type": "text", "text": {"content": content[:MAX_TEXT_LENGTH]}}]}


def number(value: Union[int, float]) -> Dict[str, Any]:
    return {"number": value}


def checkbox(value: bool) -> Dict[str, Any]:
    return {"checkbox": value}


def select(name: str) -> Dict[str, Any]:
    return {"select": {"name": name}}


def status(name: str) -> Dict[str, Any]:
    return {"status": {"name": name}}


def date(start: str) -> Dict[str, Any]:
    return {"date": {"start": start}}


def relation(record_ids: List[str]) -> Dict[str, Any]:
    return {"relation": [{"id": record_id} for record_id in record_ids]}


# ══════════════════════════════════════════════════════════════════════════
# Coercion
# ══════════════════════════════════════════════════════════════════════════


def _require_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise PropertyMappingError(
            message=f"{name} must be a string", field=name,
            context={"type": type(value).__name__},
        )
    return value


def _require_number(name: str, value: Any) -> Union[int, float]:
    # bool is an int subclass; a checkbox value in a number slot is a bug upstream.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PropertyMappingError(
            message=f"{name} must be a number", field=name,
            context={"type": type(value).__name__},
        )
    return value


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise PropertyMappingError(
            message=f"{name} must be a boolean", field=name,
            context={"type": type(value).__name__},
        )
    return value


def _relation_ids(name: str, value: Any) -> List[str]:
    urls = value if isinstance(value, (list, tuple)) else [value]
    return [extract_record_id(_require_str(name, url)) for url in urls if url]


def coerce_property(name: str, value: Any, kind: Optional[PropertyKind]) -> Optional[Dict[str, Any]]:
    """
    Coerce one plain value into a typed property.

    Returns None for values that must be left out (None, empty relations,
    unknown fields of an unsupported runtime type).

    Raises:
        PropertyMappingError: A known field holds a value of the wrong type
        InvalidUrlError: A relation URL has no record identifier
    """
    if value is None:
        return None

    if kind is None:
        if isinstance(value, bool):
            return checkbox(value)
        if isinstance(value, (int, float)):
            return number(value)
        if isinstance(value, str):
            return rich_text(value)
        return None

    if kind is K.RICH_TEXT:
        return rich_text(_require_str(name, value))
    if kind is K.TITLE:
        return title(_require_str(name, value))
    if kind is K.NUMBER:
        return number(_require_number(name, value))
    if kind is K.CHECKBOX:
        return checkbox(_require_bool(name, value))
    if kind is K.SELECT:
        return select(_require_str(name, value))
    if kind is K.STATUS:
        return status(_require_str(name, value))
    if kind is K.DATE:
        return date(_require_str(name, value))
    if kind is K.RELATION:
        ids = _relation_ids(name, value)
        return relation(ids) if ids else None
    raise PropertyMappingError(message=f"Unsupported property kind for {name}", field=name)


def to_target_properties(
    fields: Mapping[str, Any],
    schema: Mapping[str, PropertyKind],
) -> Dict[str, Dict[str, Any]]:
    """Coerce a flat field dict through `schema`, dropping absent values."""
    properties: Dict[str, Dict[str, Any]] = {}
    for name, value in fields.items():
        mapped = coerce_property(name, value, schema.get(name))
        if mapped is not None:
            properties[name] = mapped
    return properties


# ══════════════════════════════════════════════════════════════════════════
# Record variants
# ══════════════════════════════════════════════════════════════════════════


def _writeback_fields(writeback: Union[Writeback, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(writeback, Writeback):
        return writeback.to_fields()
    return {name: value for name, value in writeback.items() if value is not None}


def photo_fields(
    writeback: Union[Writeback, Mapping[str, Any]],
    context: Optional[MappingContext] = None,
) -> Dict[str, Any]:
    """
    Flat fields for the primary (photo) record.

    "AI Next Step" fans out into the select and the text property with the
    same value. The review marker is stamped when the context carries a
    review timestamp.
    """
    fields: Dict[str, Any] = {}
    for name, value in _writeback_fields(writeback).items():
        if name == NEXT_STEP_FIELD:
            fields[NEXT_STEP_SELECT_FIELD] = value
        fields[name] = value
    if context is not None and context.reviewed_at:
        fields["AI Status"] = REVIEWED_STATUS
        fields["Reviewed at"] = context.reviewed_at
    return fields


def history_name(context: MappingContext) -> str:
    """Display name: plant id, date and angle (whichever are present), in that order."""
    parts = [context.plant_id, context.date, context.angle]
    return NAME_SEPARATOR.join(part for part in parts if part)


def history_fields(
    context: MappingContext,
    writeback: Union[Writeback, Mapping[str, Any]],
) -> Dict[str, Any]:
    """Flat fields for the history record of one (record URL, date) pair."""
    wb = _writeback_fields(writeback)
    fields: Dict[str, Any] = {
        "Name": history_name(context),
        "Related Photo": [context.record_url],
        "Date": context.date,
    }
    if context.log_entry_url:
        fields["Related Log Entry"] = [context.log_entry_url]
    if context.plant_id:
        fields["userDefined:ID"] = context.plant_id
    for name in HISTORY_WRITEBACK_FIELDS:
        if name in wb:
            fields[name] = wb[name]
    fields["Status"] = COMPLETE_STATUS
    return fields


def map_to_target_properties(
    writeback: Union[Writeback, Mapping[str, Any]],
    context: Optional[MappingContext] = None,
) -> Dict[str, Dict[str, Any]]:
    """Typed properties for the primary record update."""
    return to_target_properties(photo_fields(writeback, context), PHOTO_SCHEMA)


def map_history_properties(
    context: MappingContext,
    writeback: Union[Writeback, Mapping[str, Any]],
) -> Dict[str, Dict[str, Any]]:
    """Typed properties for the history record upsert."""
    return to_target_properties(history_fields(context, writeback), HISTORY_SCHEMA)
