"""
Pytest Configuration and Fixtures

Shared fixtures for the diagnosis rule engine tests.
"""
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from clinicaldx.dx_logic.record import PatientRecord


@pytest.fixture(autouse=True)
def restore_root_logging():
    """The CLI reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to test fixture files."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def make_record():
    """Build a PatientRecord from a partial nested mapping."""
    def _make(**sections: Dict[str, Any]) -> PatientRecord:
        return PatientRecord.from_dict(sections)
    return _make


@pytest.fixture
def simple_rule_doc() -> Dict[str, Any]:
    """A small three-group rule document exercising both path passes."""
    return {
        "name": "Test Condition",
        "paths": [
            {"formula": "a AND b", "summary": "Both a and b"},
            {"formula": "c", "summary": "c alone"},
        ],
        "absent_summary": "Not present",
        "indeterminate_summary": "Need more data",
        "groups": [
            {
                "id": "a",
                "name": "Group A",
                "logic": "ANY",
                "criteria": [
                    {"name": "Tachycardia", "field": "vitals.heartRate", "operator": ">", "value": 100},
                ],
            },
            {
                "id": "b",
                "name": "Group B",
                "logic": "ANY",
                "criteria": [
                    {"name": "Cough", "field": "symptoms.cough", "operator": "is_true"},
                ],
            },
            {
                "id": "c",
                "name": "Group C",
                "logic": "ANY",
                "criteria": [
                    {"name": "Infiltrate", "field": "imaging.pulmonaryInfiltrate", "operator": "is_true"},
                ],
            },
        ],
    }


@pytest.fixture
def rule_yaml():
    """Serialize a rule document mapping to YAML source text."""
    def _dump(doc: Dict[str, Any]) -> str:
        return yaml.safe_dump(doc, sort_keys=False)
    return _dump


@pytest.fixture
def septic_record() -> PatientRecord:
    """Febrile, tachycardic, leukocytosis, on IV antibiotics, SOFA 3."""
    return PatientRecord.from_dict({
        "vitals": {"temperatureF": 101.5, "heartRate": 110, "respiratoryRate": 18},
        "labs": {"wbc": 14, "sofaScore": 3},
        "medications": {"ivAntibiotics": True},
    })


@pytest.fixture
def healthy_record() -> PatientRecord:
    """Every bundled rule's key findings known and normal."""
    return PatientRecord.from_dict({
        "vitals": {"temperatureF": 98.6, "heartRate": 72, "respiratoryRate": 14},
        "labs": {
            "wbc": 8, "sofaScore": 0, "lvedp": 10, "fena": 0.5,
            "creatinine": 0.9, "creatinine48hAgo": 0.9, "creatinineBaseline": 0.9,
        },
        "medications": {
            "ivAntibiotics": False, "oralAntibiotics": False,
            "nsaidUse": False, "nephrotoxicMedication": False,
        },
        "symptoms": {"fever": False, "cough": False, "shortnessOfBreath": False},
        "imaging": {"pulmonaryInfiltrate": False, "consolidation": False, "groundGlassOpacity": False},
        "urine": {"muddyBrownCasts": False},
        "framingham": {
            "paroxysmalNocturnalDyspnea": False, "neckVeinDistention": False, "rales": False,
            "cardiomegaly": False, "acutePulmonaryEdema": False, "s3Gallop": False,
            "hepatojugularReflux": False, "weightLossOnDiuretics": False,
            "ankleEdema": False, "nocturnalCough": False, "dyspneaOnExertion": False,
            "hepatomegaly": False, "pleuralEffusion": False, "tachycardia": False,
        },
    })
