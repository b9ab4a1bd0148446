# ebookweb/services/toc_document.py
"""
Typed views over the two JSON blobs the TOC code touches:

  * books.toc_json  -> TocDocument / Phase / ChapterEntry (pydantic)
  * chapters.content -> ChapterContent

JSON text only exists at the storage boundary (from_storage / to_json);
everything in between works on these objects. Stored keys are camelCase
aliases; keys the models do not declare ride along through ``extra="allow"``.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

DEFAULT_PHASE_ID = "phase_1"
DEFAULT_PHASE_TITLE = "PHASE 1"

_INT = TypeAdapter(int)
_FLOAT = TypeAdapter(float)


def dump_json(value: Any) -> str:
    """Compact UTF-8 JSON (no \\uXXXX escapes, slashes left alone)."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _load_json(raw: Optional[str]) -> Any:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


def as_int(value: Any) -> Optional[int]:
    """Lax pydantic int validation; None when the value is not an integer."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return _INT.validate_python(value)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# TOC document
# ---------------------------------------------------------------------------
class ChapterEntry(BaseModel):
    """One ``phases[].chapters[]`` item, keyed by chapter number."""

    model_config = ConfigDict(populate_by_name=True)

    chapter_number: int = Field(alias="chapterNumber")
    chapter_title: Any = Field(default=None, alias="chapterTitle")
    json_file: Any = Field(default=None, alias="jsonFile")
    type: Any = None
    week: Optional[int] = None

    @field_validator("week", mode="before")
    @classmethod
    def _week_as_int(cls, value: Any) -> Optional[int]:
        # "3", 3.0 -> 3; anything non-numeric ("W3") -> 0
        if value is None:
            return None
        try:
            return int(_FLOAT.validate_python(value))
        except (ValidationError, ValueError, OverflowError):
            return 0

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _usable_entries(raw: Any) -> List[ChapterEntry]:
    if not isinstance(raw, list):
        return []
    entries: List[ChapterEntry] = []
    for item in raw:
        if isinstance(item, ChapterEntry):
            entries.append(item)
            continue
        if not isinstance(item, dict):
            continue
        try:
            entry = ChapterEntry.model_validate(item)
        except ValidationError:
            continue
        if entry.chapter_number:
            entries.append(entry)
    return entries


class Phase(BaseModel):
    # Unknown phase keys (color, icon, ...) are kept verbatim.
    model_config = ConfigDict(extra="allow")

    phase_id: Any = Field(default=None, alias="phaseId")
    phase_title: Any = Field(default=None, alias="phaseTitle")
    phase_description: Any = Field(default=None, alias="phaseDescription")
    badge_earned: Any = Field(default=None, alias="badgeEarned")
    chapters: List[ChapterEntry] = Field(default_factory=list)

    @field_validator("chapters", mode="before")
    @classmethod
    def _skip_unkeyed_entries(cls, value: Any) -> List[ChapterEntry]:
        return _usable_entries(value)

    @classmethod
    def default(cls) -> "Phase":
        return cls.model_validate(
            {
                "phaseId": DEFAULT_PHASE_ID,
                "phaseTitle": DEFAULT_PHASE_TITLE,
                "phaseDescription": "",
                "badgeEarned": "",
                "chapters": [],
            }
        )

    @property
    def meta(self) -> Dict[str, Any]:
        """Stored phase keys other than ``chapters``."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude={"chapters"})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class TocDocument(BaseModel):
    # Unknown top-level keys (cover, author, ...) ride along untouched.
    model_config = ConfigDict(extra="allow")

    ebook_title: Any = Field(default=None, alias="ebookTitle")
    total_chapters: Any = Field(default=0, alias="totalChapters")
    phases: List[Phase] = Field(default_factory=list)

    @field_validator("phases", mode="before")
    @classmethod
    def _object_phases_only(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [p for p in value if isinstance(p, (dict, Phase))]

    @classmethod
    def from_storage(cls, raw: Optional[str], *, default_title: Optional[str] = None) -> "TocDocument":
        """
        Parse books.toc_json. Non-object phases are dropped; when no phase
        is left (missing, unparsable, not an object, empty list) the document
        gets a single default phase. Other stored keys are kept.
        """
        doc: Optional[TocDocument] = None
        if raw is not None and str(raw).strip() != "":
            try:
                doc = cls.model_validate_json(raw)
            except ValidationError:
                doc = None
        if doc is not None and doc.phases:
            return doc

        data: Dict[str, Any] = dict(doc.model_extra or {}) if doc is not None else {}
        title = doc.ebook_title if doc is not None else None
        total = doc.total_chapters if doc is not None else None
        data.update(
            ebookTitle=title if title is not None else (default_title or "Untitled"),
            totalChapters=0 if total is None else total,
            phases=[Phase.default()],
        )
        return cls.model_validate(data)

    def all_entries(self) -> List[ChapterEntry]:
        return [entry for phase in self.phases for entry in phase.chapters]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_unset=True)


# ---------------------------------------------------------------------------
# Chapter content
# ---------------------------------------------------------------------------
class ChapterContent:
    """Wrapper over a chapter's JSON object; non-objects read as empty."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data) if isinstance(data, dict) else {}

    @classmethod
    def from_storage(cls, raw: Optional[str]) -> "ChapterContent":
        return cls(_load_json(raw))

    @property
    def meta(self) -> Dict[str, Any]:
        meta = self.data.get("meta")
        return meta if isinstance(meta, dict) else {}

    def display_title(self, number: int) -> str:
        for candidate in (
            self.data.get("chapterTitle"),
            self.data.get("title"),
            self.meta.get("title"),
        ):
            if candidate is not None:
                return candidate
        return f"Chương {number}"

    def with_numbering(self, number: int, chapter_id: int) -> "ChapterContent":
        """Copy with every embedded chapter-number field pointing at the row."""
        data = dict(self.data)
        data["chapter_number"] = number
        data["chapterNumber"] = number
        meta = dict(self.meta)
        meta["chapter_number"] = number
        meta["chapterNumber"] = number
        meta["chapter_id"] = chapter_id
        data["meta"] = meta
        return ChapterContent(data)

    def to_json(self) -> str:
        return dump_json(self.data)
