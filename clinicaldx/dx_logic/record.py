#!/usr/bin/env python3
"""
ClinicalDx — Patient Data Record (v1)

Fixed-shape nested record of named sections. Every leaf is a number, a
boolean, or absent (``None``). Absence is a value in its own right: every
leaf defined by the schema always exists on the record, even when unknown.

Design:
- Schema is the set of dataclass fields below (single source of truth)
- Records are frozen; edits and merges return new records
- Merge is field-level: an absent update never erases a known value
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from clinicaldx.utils.exceptions import RecordError

NUMBER = "number"
BOOLEAN = "boolean"


@dataclass(frozen=True)
class VitalSigns:
    heartRate: Optional[float] = None
    respiratoryRate: Optional[float] = None
    temperatureF: Optional[float] = None
    systolicBP: Optional[float] = None
    diastolicBP: Optional[float] = None
    meanArterialPressure: Optional[float] = None


@dataclass(frozen=True)
class LabValues:
    wbc: Optional[float] = None                 # x1000/uL
    creatinine: Optional[float] = None          # mg/dL
    creatinineBaseline: Optional[float] = None  # mg/dL
    creatinine48hAgo: Optional[float] = None    # mg/dL
    ck: Optional[float] = None                  # U/L
    lvedp: Optional[float] = None               # mmHg
    sofaScore: Optional[float] = None
    fena: Optional[float] = None                # %


@dataclass(frozen=True)
class Medications:
    ivAntibiotics: Optional[bool] = None
    oralAntibiotics: Optional[bool] = None
    diureticsGiven: Optional[bool] = None
    nsaidUse: Optional[bool] = None
    nephrotoxicMedication: Optional[bool] = None


@dataclass(frozen=True)
class Symptoms:
    shortnessOfBreath: Optional[bool] = None
    cough: Optional[bool] = None
    chestPain: Optional[bool] = None
    fever: Optional[bool] = None
    changeInMentalStatus: Optional[bool] = None


@dataclass(frozen=True)
class ImagingFindings:
    pulmonaryInfiltrate: Optional[bool] = None
    groundGlassOpacity: Optional[bool] = None
    consolidation: Optional[bool] = None


@dataclass(frozen=True)
class UrineAnalysis:
    muddyBrownCasts: Optional[bool] = None


@dataclass(frozen=True)
class FraminghamCriteria:
    # Major criteria
    paroxysmalNocturnalDyspnea: Optional[bool] = None
    neckVeinDistention: Optional[bool] = None
    rales: Optional[bool] = None
    cardiomegaly: Optional[bool] = None
    acutePulmonaryEdema: Optional[bool] = None
    s3Gallop: Optional[bool] = None
    hepatojugularReflux: Optional[bool] = None
    weightLossOnDiuretics: Optional[bool] = None
    # Minor criteria
    ankleEdema: Optional[bool] = None
    nocturnalCough: Optional[bool] = None
    dyspneaOnExertion: Optional[bool] = None
    hepatomegaly: Optional[bool] = None
    pleuralEffusion: Optional[bool] = None
    tachycardia: Optional[bool] = None


# section name -> (section class, leaf kind)
SECTIONS: Dict[str, Tuple[type, str]] = {
    "vitals": (VitalSigns, NUMBER),
    "labs": (LabValues, NUMBER),
    "medications": (Medications, BOOLEAN),
    "symptoms": (Symptoms, BOOLEAN),
    "imaging": (ImagingFindings, BOOLEAN),
    "urine": (UrineAnalysis, BOOLEAN),
    "framingham": (FraminghamCriteria, BOOLEAN),
}


@dataclass(frozen=True)
class PatientRecord:
    """Structured patient data consumed by compiled rules.

    Attributes mirror ``SECTIONS``; each holds a frozen section dataclass
    whose leaves are ``None`` until a value is known.
    """
    vitals: VitalSigns = field(default_factory=VitalSigns)
    labs: LabValues = field(default_factory=LabValues)
    medications: Medications = field(default_factory=Medications)
    symptoms: Symptoms = field(default_factory=Symptoms)
    imaging: ImagingFindings = field(default_factory=ImagingFindings)
    urine: UrineAnalysis = field(default_factory=UrineAnalysis)
    framingham: FraminghamCriteria = field(default_factory=FraminghamCriteria)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PatientRecord":
        """Build a record from a possibly partial nested mapping.

        Missing sections and leaves become absent. Unknown names and values
        of the wrong type raise ``RecordError``.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise RecordError(f"Patient record must be a mapping, got {type(data).__name__}", path="")

        sections: Dict[str, Any] = {}
        for section_name, raw_section in data.items():
            if section_name not in SECTIONS:
                raise RecordError(f"Unknown record section: {section_name}", path=str(section_name))
            section_cls, kind = SECTIONS[section_name]
            if raw_section is None:
                sections[section_name] = section_cls()
                continue
            if not isinstance(raw_section, Mapping):
                raise RecordError(
                    f"Record section '{section_name}' must be a mapping",
                    path=section_name,
                )
            leaves = {f.name for f in fields(section_cls)}
            values: Dict[str, Any] = {}
            for leaf, raw in raw_section.items():
                path = f"{section_name}.{leaf}"
                if leaf not in leaves:
                    raise RecordError(f"Unknown record field: {path}", path=path)
                values[leaf] = _coerce(raw, kind, path)
            sections[section_name] = section_cls(**values)
        return cls(**sections)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Nested mapping with every schema leaf present (``None`` = absent)."""
        out: Dict[str, Dict[str, Any]] = {}
        for section_name in SECTIONS:
            section = getattr(self, section_name)
            out[section_name] = {f.name: getattr(section, f.name) for f in fields(section)}
        return out


def _coerce(raw: Any, kind: str, path: str) -> Any:
    if raw is None:
        return None
    if kind == BOOLEAN:
        if isinstance(raw, bool):
            return raw
        raise RecordError(f"{path} expects a boolean, got {raw!r}", path=path)
    # bool is an int subclass; reject it for numeric leaves
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise RecordError(f"{path} expects a number, got {raw!r}", path=path)
    return float(raw)


def empty_record() -> PatientRecord:
    """A record with every leaf present and absent."""
    return PatientRecord()


def schema_paths() -> List[str]:
    """Every valid dotted field path, in schema order."""
    return [
        f"{section_name}.{f.name}"
        for section_name, (section_cls, _) in SECTIONS.items()
        for f in fields(section_cls)
    ]


def field_kind(path: str) -> Optional[str]:
    """Return NUMBER / BOOLEAN for a valid ``section.leaf`` path, else None."""
    parts = path.split(".")
    if len(parts) != 2:
        return None
    section_name, leaf = parts
    entry = SECTIONS.get(section_name)
    if entry is None:
        return None
    section_cls, kind = entry
    if leaf not in {f.name for f in fields(section_cls)}:
        return None
    return kind


def merge_records(base: PatientRecord, update: PatientRecord) -> PatientRecord:
    """Field-level merge: known values in ``update`` win, absent ones never erase."""
    sections: Dict[str, Any] = {}
    for section_name in SECTIONS:
        base_section = getattr(base, section_name)
        update_section = getattr(update, section_name)
        changes = {
            f.name: getattr(update_section, f.name)
            for f in fields(update_section)
            if getattr(update_section, f.name) is not None
        }
        sections[section_name] = replace(base_section, **changes) if changes else base_section
    return PatientRecord(**sections)


def set_field(record: PatientRecord, path: str, value: Any) -> PatientRecord:
    """Apply a single user edit by dotted path, returning a new record.

    Setting ``None`` marks the leaf absent again (an explicit user edit,
    unlike a merge).
    """
    kind = field_kind(path)
    if kind is None:
        raise RecordError(f"Unknown record field: {path}", path=path)
    section_name, leaf = path.split(".")
    section = getattr(record, section_name)
    new_section = replace(section, **{leaf: _coerce(value, kind, path)})
    return replace(record, **{section_name: new_section})


def known_field_count(record: PatientRecord) -> int:
    """How many schema leaves hold a value."""
    return sum(
        1
        for section_name in SECTIONS
        for f in fields(getattr(record, section_name))
        if getattr(getattr(record, section_name), f.name) is not None
    )
