"""Entry ("verbete") types and the metadata each one accepts."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

FieldKind = Literal["date", "text"]

MAX_TEXT_FIELD_LENGTH = 500
_PARTIAL_DATE = re.compile(r"([0-9]{4})(?:-([0-9]{2})(?:-([0-9]{2}))?)?\Z")


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    kind: FieldKind
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "label": self.label, "kind": self.kind, "required": self.required}


@dataclass(frozen=True)
class VerbeteType:
    key: str
    title: str
    fields: tuple[FieldSpec, ...]
    # (start, end) field pairs that must be chronologically ordered.
    ordered_dates: tuple[tuple[str, str], ...] = ()

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(spec.name for spec in self.fields)

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.required)

    def field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "fields": [spec.to_dict() for spec in self.fields],
        }


VERBETE_TYPES: dict[str, VerbeteType] = {
    verbete.key: verbete
    for verbete in (
        VerbeteType(
            key="person",
            title="Pessoa",
            fields=(
                FieldSpec("birth_date", "Nascimento", "date", required=True),
                FieldSpec("death_date", "Falecimento", "date"),
                FieldSpec("birth_place", "Local de nascimento", "text"),
                FieldSpec("death_place", "Local de falecimento", "text"),
                FieldSpec("nationality", "Nacionalidade", "text"),
            ),
            ordered_dates=(("birth_date", "death_date"),),
        ),
        VerbeteType(
            key="work",
            title="Obra",
            fields=(
                FieldSpec("publication_date", "Publicação", "date", required=True),
                FieldSpec("original_title", "Título original", "text"),
                FieldSpec("medium", "Suporte", "text"),
            ),
        ),
        VerbeteType(
            key="event",
            title="Evento",
            fields=(
                FieldSpec("start_date", "Início", "date", required=True),
                FieldSpec("end_date", "Fim", "date"),
                FieldSpec("location", "Local", "text"),
            ),
            ordered_dates=(("start_date", "end_date"),),
        ),
        VerbeteType(
            key="institution",
            title="Instituição",
            fields=(
                FieldSpec("opening_date", "Abertura", "date", required=True),
                FieldSpec("closing_date", "Fechamento", "date"),
                FieldSpec("location", "Local", "text"),
            ),
            ordered_dates=(("opening_date", "closing_date"),),
        ),
        VerbeteType(
            key="company",
            title="Empresa",
            fields=(
                FieldSpec("founding_date", "Fundação", "date", required=True),
                FieldSpec("closing_date", "Encerramento", "date"),
                FieldSpec("headquarters", "Sede", "text"),
            ),
            ordered_dates=(("founding_date", "closing_date"),),
        ),
        VerbeteType(
            key="group",
            title="Grupo",
            fields=(
                FieldSpec("formation_date", "Formação", "date", required=True),
                FieldSpec("dissolution_date", "Dissolução", "date"),
            ),
            ordered_dates=(("formation_date", "dissolution_date"),),
        ),
        VerbeteType(
            key="concept",
            title="Conceito",
            fields=(FieldSpec("field_of_study", "Área", "text"),),
        ),
    )
}


def get_verbete_type(key: object) -> VerbeteType | None:
    if not isinstance(key, str):
        return None
    return VERBETE_TYPES.get(key.strip().lower())


def parse_partial_date(value: object) -> tuple[int, ...] | None:
    """Parse ``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD``; returns None when malformed."""
    if not isinstance(value, str):
        return None
    match = _PARTIAL_DATE.match(value.strip())
    if match is None:
        return None
    parts = tuple(int(group) for group in match.groups() if group is not None)
    if parts[0] == 0:
        return None
    if len(parts) >= 2 and not 1 <= parts[1] <= 12:
        return None
    if len(parts) == 3:
        try:
            date(parts[0], parts[1], parts[2])
        except ValueError:
            return None
    return parts


def validate_metadata(verbete: VerbeteType, metadata: Mapping[str, Any]) -> list[str]:
    """Return human-readable problems with present metadata values; missing values are not errors."""
    errors: list[str] = []
    for name, value in metadata.items():
        spec = verbete.field(name)
        if spec is None:
            errors.append(f"Unknown field '{name}' for verbete type '{verbete.key}'")
            continue
        if value is None:
            continue
        if spec.kind == "date":
            if parse_partial_date(value) is None:
                errors.append(f"Field '{name}' must be a date (YYYY, YYYY-MM or YYYY-MM-DD)")
        elif not isinstance(value, str):
            errors.append(f"Field '{name}' must be text")
        elif len(value) > MAX_TEXT_FIELD_LENGTH:
            errors.append(f"Field '{name}' must be at most {MAX_TEXT_FIELD_LENGTH} characters")

    for start_name, end_name in verbete.ordered_dates:
        start = parse_partial_date(metadata.get(start_name))
        end = parse_partial_date(metadata.get(end_name))
        if start is None or end is None:
            continue
        precision = min(len(start), len(end))
        if end[:precision] < start[:precision]:
            errors.append(f"Field '{end_name}' must not be earlier than '{start_name}'")
    return errors
