"""
Entity Field Mapper
===================
Reconciles extractor entities into the fixed report schema.

Matching is a bidirectional, case-insensitive substring test between the
entity's type label and each alias, scanned in table order. The first
matching field wins, so the order of ``DEFAULT_ALIASES`` is significant:
a "Patient Age" label resolves to ``patient.name`` because the "Patient"
alias is listed before ``patient.age``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from .models import EntityRecord, FieldValue

logger = logging.getLogger(__name__)

# A populated field is replaced only by a strictly more confident candidate.
OVERWRITE_CONFIDENCE = 0.70


@dataclass(frozen=True)
class FieldAlias:
    """Acceptable label spellings for one canonical field."""
    section: str
    field: str
    labels: tuple[str, ...]

    @property
    def key(self) -> str:
        return f"{self.section}.{self.field}"

    def matches(self, type_label: str) -> bool:
        """Bidirectional substring test on an already lower-cased label."""
        # A blank label would be a substring of every alias; treat it as
        # unmatched rather than routing it to the first field.
        if not type_label:
            return False
        for label in self.labels:
            alias = label.lower()
            if alias in type_label or type_label in alias:
                return True
        return False


class AliasTable:
    """Immutable, ordered collection of field aliases."""

    def __init__(self, entries: Iterable[FieldAlias]):
        self._entries: tuple[FieldAlias, ...] = tuple(entries)
        keys = [e.key for e in self._entries]
        duplicates = {k for k in keys if keys.count(k) > 1}
        if duplicates:
            raise ValueError(f"Duplicate alias entries: {sorted(duplicates)}")

    def __iter__(self) -> Iterator[FieldAlias]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, type_label: str) -> Optional[FieldAlias]:
        """First entry (in declaration order) matching the label."""
        label = (type_label or "").strip().lower()
        for entry in self._entries:
            if entry.matches(label):
                return entry
        return None

    def fields(self) -> list[str]:
        return [e.key for e in self._entries]


# Declaration order is the matching order.
DEFAULT_ALIASES: tuple[FieldAlias, ...] = (
    # Patient (the animal)
    FieldAlias("patient", "name", ("Patient", "Patient Name", "Paciente", "Nombre Paciente", "Pet Name", "Animal")),
    FieldAlias("patient", "species", ("Species", "Especie", "Animal Type", "Tipo Animal")),
    FieldAlias("patient", "breed", ("Breed", "Raza", "Race")),
    FieldAlias("patient", "age", ("Age", "Edad", "Patient Age")),
    FieldAlias("patient", "weight", ("Weight", "Peso", "Patient Weight")),
    FieldAlias("patient", "sex", ("Sex", "Sexo", "Gender", "Género")),

    # Owner
    FieldAlias("owner", "name", ("Owner", "Owner Name", "Dueño", "Propietario", "Client", "Cliente")),
    FieldAlias("owner", "phone", ("Phone", "Teléfono", "Contact", "Contacto")),
    FieldAlias("owner", "email", ("Email", "Correo", "E-mail")),
    FieldAlias("owner", "address", ("Address", "Dirección", "Domicilio")),

    # Veterinarian
    FieldAlias("veterinarian", "name", ("Veterinarian", "Vet", "Veterinario", "Doctor", "Dr.", "Médico")),
    FieldAlias("veterinarian", "license", ("License", "Licencia", "Cédula", "Registration")),
    FieldAlias("veterinarian", "clinic", ("Clinic", "Clínica", "Hospital", "Centro Veterinario")),

    # Study
    FieldAlias("study", "date", ("Date", "Fecha", "Study Date", "Fecha Estudio", "Exam Date")),
    FieldAlias("study", "type", ("Study Type", "Tipo Estudio", "Exam Type", "Examination")),

    # Clinical findings
    FieldAlias("clinical", "diagnosis", ("Diagnosis", "Diagnóstico", "Findings", "Hallazgos", "Impression", "Impresión")),
    FieldAlias("clinical", "observations", ("Observations", "Observaciones", "Notes", "Notas", "Comments")),
    FieldAlias("clinical", "recommendations", ("Recommendations", "Recomendaciones", "Treatment", "Tratamiento", "Follow-up")),
    FieldAlias("clinical", "measurements", ("Measurements", "Mediciones", "Dimensions", "Dimensiones")),
)

DEFAULT_ALIAS_TABLE = AliasTable(DEFAULT_ALIASES)


MappedFields = dict[str, dict[str, FieldValue]]


class EntityFieldMapper:
    """
    Maps entity records onto canonical (section, field) slots.

    Conflict rule: an empty slot is always filled; a filled slot is
    replaced only when the newcomer's confidence exceeds the threshold.
    """

    def __init__(
        self,
        alias_table: AliasTable = DEFAULT_ALIAS_TABLE,
        overwrite_threshold: float = OVERWRITE_CONFIDENCE,
    ):
        self.alias_table = alias_table
        self.overwrite_threshold = overwrite_threshold

    def map_entities(self, entities: Iterable[EntityRecord]) -> MappedFields:
        """
        Args:
            entities: Entity records in arrival order.

        Returns:
            ``{section: {field: FieldValue}}`` for sections with at least
            one match.
        """
        mapped: MappedFields = {}
        unmatched = 0

        for entity in entities:
            entry = self.alias_table.match(entity.type_label)
            if entry is None:
                unmatched += 1
                continue

            section = mapped.setdefault(entry.section, {})
            if entry.field in section and entity.confidence <= self.overwrite_threshold:
                logger.debug(
                    f"Keeping {entry.key}: {entity.type_label!r} at "
                    f"{entity.confidence:.2f} does not displace existing value"
                )
                continue

            section[entry.field] = FieldValue(
                value=entity.text.strip(),
                confidence=to_percent(entity.confidence),
            )

        if unmatched:
            logger.info(f"{unmatched} entit(y/ies) matched no schema field")

        return mapped


def to_percent(confidence: float) -> int:
    """0-1 confidence → integer percentage, rounding halves up."""
    return max(0, min(100, int(math.floor(confidence * 100 + 0.5))))
