"""Record types consumed and produced by the matching pipeline.

``Record`` is the unit of input: an opaque identifier plus a mapping of
field values. ``EntityRecord`` is the deduplication view of a real-world
subject, carrying golden-record status.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "Record",
    "EntityRecord",
    "normalize_text",
    "name_tokens",
]

_NON_ALNUM = re.compile(r"[^0-9a-z]+")

MIN_TOKEN_LEN = 3


def normalize_text(value: Any) -> str:
    """Normalize a field value for comparison.

    Lower-cases, strips accents, and collapses any run of
    non-alphanumeric characters to a single space.

    Parameters
    ----------
    value : Any
        Raw field value; ``None`` maps to ``""``.

    Returns
    -------
    str
        Normalized text (possibly empty).
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", text.lower()).strip()


def name_tokens(value: Any, min_len: int = MIN_TOKEN_LEN) -> list[str]:
    """Split a normalized value into tokens of at least *min_len* chars."""
    return [t for t in normalize_text(value).split() if len(t) >= min_len]


@dataclass(frozen=True)
class Record:
    """A single input record.

    Attributes
    ----------
    rid : str
        Identifier unique within its dataset.
    fields : Mapping[str, Any]
        Field name to raw value.
    """

    rid: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        """Return the raw value of *name*, or ``None`` when absent."""
        return self.fields.get(name)

    def has(self, name: str) -> bool:
        """Whether *name* holds a non-empty value."""
        value = self.fields.get(name)
        return value is not None and normalize_text(value) != ""

    def with_fields(self, **updates: Any) -> Record:
        """Return a copy with some field values replaced."""
        return replace(self, fields={**self.fields, **updates})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"rid": self.rid, "fields": dict(self.fields)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], id_field: str = "id") -> Record:
        """Build a record from a flat mapping or a ``{"rid", "fields"}`` mapping.

        Parameters
        ----------
        data : Mapping[str, Any]
            Either ``{"rid": ..., "fields": {...}}`` or a flat row.
        id_field : str, optional
            Field holding the identifier of a flat row.
        """
        if "rid" in data and isinstance(data.get("fields"), Mapping):
            return cls(rid=str(data["rid"]), fields=dict(data["fields"]))
        if id_field not in data:
            raise KeyError(f"Record has no {id_field!r} field: {dict(data)!r}")
        return cls(rid=str(data[id_field]), fields=dict(data))


@dataclass(frozen=True)
class EntityRecord:
    """Deduplication view of one real-world entity.

    Attributes
    ----------
    primary_identifier : str
        Stable identifier of the entity.
    primary_name : str
        Display name used for fuzzy search.
    aliases : frozenset[str]
        Alternative names.
    is_golden_record : bool
        Whether this record represents its cluster.
    source_of_truth : str | None
        Dataset or system the record came from.
    confidence : float
        Match confidence against the entity being deduplicated.
    created_at : datetime | None
        Creation time, used as the final sort tie-breaker.
    attributes : Mapping[str, Any]
        Remaining field values.
    """

    primary_identifier: str
    primary_name: str
    aliases: frozenset[str] = frozenset()
    is_golden_record: bool = False
    source_of_truth: str | None = None
    confidence: float = 0.0
    created_at: datetime | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def as_record(self) -> Record:
        """Project to a ``Record`` so the scorer can compare entities."""
        fields = dict(self.attributes)
        fields.setdefault("id", self.primary_identifier)
        fields.setdefault("name", self.primary_name)
        return Record(rid=self.primary_identifier, fields=fields)

    def names(self) -> list[str]:
        """Primary name followed by aliases in sorted order."""
        return [self.primary_name, *sorted(self.aliases)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "primary_identifier": self.primary_identifier,
            "primary_name": self.primary_name,
            "aliases": sorted(self.aliases),
            "is_golden_record": self.is_golden_record,
            "source_of_truth": self.source_of_truth,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_record(
        cls,
        record: Record,
        *,
        name_field: str = "name",
        alias_field: str = "aliases",
        created_at_field: str = "created_at",
        source_of_truth: str | None = None,
    ) -> EntityRecord:
        """Build an entity view of an input record.

        A string ``created_at`` value is parsed as ISO 8601; unparseable values
        leave ``created_at`` unset.
        """
        raw_aliases = record.get(alias_field) or ()
        if isinstance(raw_aliases, str):
            raw_aliases = (raw_aliases,)
        created_at = record.get(created_at_field)
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                created_at = None
        elif not isinstance(created_at, datetime):
            created_at = None
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return cls(
            primary_identifier=record.rid,
            primary_name=str(record.get(name_field) or ""),
            aliases=frozenset(str(a) for a in raw_aliases),
            source_of_truth=source_of_truth,
            created_at=created_at,
            attributes=dict(record.fields),
        )
