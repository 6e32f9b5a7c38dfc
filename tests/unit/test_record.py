"""
Unit Tests for the Patient Data Record and Field Accessor

Schema shape, construction from partial mappings, field-level merge,
single-field edits and compiled path lookup.
"""
import pytest

from clinicaldx.dx_logic.accessor import make_accessor
from clinicaldx.dx_logic.record import (
    BOOLEAN,
    NUMBER,
    PatientRecord,
    empty_record,
    field_kind,
    known_field_count,
    merge_records,
    schema_paths,
    set_field,
)
from clinicaldx.utils.exceptions import RecordError, SchemaError, UnknownFieldPath


class TestSchema:
    """Tests for the fixed record schema."""

    def test_empty_record_has_every_leaf_absent(self):
        """Every leaf exists as a key, holding None."""
        data = empty_record().to_dict()
        leaves = [(s, k) for s, section in data.items() for k in section]
        assert len(leaves) == len(schema_paths())
        assert all(data[s][k] is None for s, k in leaves)
        assert known_field_count(empty_record()) == 0

    def test_schema_paths_order_and_content(self):
        paths = schema_paths()
        assert paths[0] == "vitals.heartRate"
        assert "labs.creatinine48hAgo" in paths
        assert "framingham.tachycardia" in paths
        assert len(paths) == len(set(paths))

    def test_field_kind(self):
        assert field_kind("vitals.heartRate") == NUMBER
        assert field_kind("symptoms.cough") == BOOLEAN
        assert field_kind("vitals.heartrate") is None
        assert field_kind("vitals") is None
        assert field_kind("vitals.heartRate.extra") is None
        assert field_kind("nosuch.heartRate") is None


class TestFromDict:
    """Tests for PatientRecord.from_dict / to_dict."""

    def test_partial_mapping(self, make_record):
        """Missing sections and leaves become absent."""
        record = make_record(vitals={"heartRate": 110}, symptoms={"cough": True})
        assert record.vitals.heartRate == 110.0
        assert record.vitals.respiratoryRate is None
        assert record.symptoms.cough is True
        assert record.labs.wbc is None
        assert known_field_count(record) == 2

    def test_integers_become_floats(self, make_record):
        record = make_record(labs={"wbc": 14})
        assert isinstance(record.labs.wbc, float)

    def test_false_is_known(self, make_record):
        """False is a value, distinct from absent."""
        record = make_record(symptoms={"cough": False})
        assert record.symptoms.cough is False
        assert known_field_count(record) == 1

    def test_none_section(self):
        record = PatientRecord.from_dict({"vitals": None})
        assert record == empty_record()

    def test_none_input(self):
        assert PatientRecord.from_dict(None) == empty_record()

    @pytest.mark.parametrize("data, path", [
        ({"vitalz": {}}, "vitalz"),
        ({"vitals": {"pulse": 80}}, "vitals.pulse"),
        ({"vitals": {"heartRate": "fast"}}, "vitals.heartRate"),
        ({"vitals": {"heartRate": True}}, "vitals.heartRate"),
        ({"symptoms": {"cough": 1}}, "symptoms.cough"),
        ({"symptoms": {"cough": "yes"}}, "symptoms.cough"),
        ({"vitals": [1, 2]}, "vitals"),
    ])
    def test_rejects_malformed_input(self, data, path):
        with pytest.raises(RecordError) as exc_info:
            PatientRecord.from_dict(data)
        assert exc_info.value.path == path
        assert exc_info.value.code == "RECORD_ERROR"

    def test_to_dict_round_trip(self, septic_record):
        assert PatientRecord.from_dict(septic_record.to_dict()) == septic_record


class TestMergeAndEdit:
    """Tests for field-level merge and single-field edits."""

    def test_known_update_wins(self, make_record):
        base = make_record(vitals={"heartRate": 80})
        update = make_record(vitals={"heartRate": 120})
        assert merge_records(base, update).vitals.heartRate == 120.0

    def test_absent_update_never_erases(self, make_record):
        base = make_record(vitals={"heartRate": 80}, labs={"wbc": 9})
        update = make_record(labs={"wbc": 15})
        merged = merge_records(base, update)
        assert merged.vitals.heartRate == 80.0
        assert merged.labs.wbc == 15.0

    def test_false_update_overwrites_true(self, make_record):
        base = make_record(symptoms={"cough": True})
        update = make_record(symptoms={"cough": False})
        assert merge_records(base, update).symptoms.cough is False

    def test_merge_does_not_mutate_inputs(self, make_record):
        base = make_record(vitals={"heartRate": 80})
        update = make_record(vitals={"respiratoryRate": 22})
        merge_records(base, update)
        assert base.vitals.respiratoryRate is None
        assert update.vitals.heartRate is None

    def test_set_field(self):
        record = set_field(empty_record(), "labs.creatinine", 2)
        assert record.labs.creatinine == 2.0
        assert empty_record().labs.creatinine is None

    def test_set_field_to_absent(self, make_record):
        record = set_field(make_record(symptoms={"fever": True}), "symptoms.fever", None)
        assert record.symptoms.fever is None

    def test_set_field_rejects_unknown_path(self):
        with pytest.raises(RecordError):
            set_field(empty_record(), "labs.lactate", 2.0)

    def test_set_field_rejects_wrong_type(self):
        with pytest.raises(RecordError):
            set_field(empty_record(), "symptoms.fever", 1)


class TestAccessor:
    """Tests for compiled dotted-path lookup."""

    def test_reads_leaf(self, make_record):
        get = make_accessor("vitals.heartRate")
        assert get(make_record(vitals={"heartRate": 95})) == 95.0

    def test_absent_leaf(self):
        assert make_accessor("symptoms.cough")(empty_record()) is None

    def test_absent_section_short_circuits(self):
        """An intermediate absent segment yields absent, not an error."""
        get = make_accessor("vitals.heartRate")

        class _NoVitals:
            vitals = None

        assert get(_NoVitals()) is None

    @pytest.mark.parametrize("path", ["vitals.pulse", "vitals", "", "a.b.c", None, 42])
    def test_unknown_path_fails_at_compile_time(self, path):
        with pytest.raises(UnknownFieldPath) as exc_info:
            make_accessor(path)
        assert isinstance(exc_info.value, SchemaError)
        assert exc_info.value.code == "UNKNOWN_FIELD_PATH"
