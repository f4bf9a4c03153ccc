"""
Test Field Store - single write path, atomic batches, audit hooks

Run with: pytest tests/test_field_store.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from intake_engine.config import load_default_config
from intake_engine.contracts import Provider
from intake_engine.core.conditional_resolver import ConditionalResolver
from intake_engine.core.field_store import FieldStore
from intake_engine.core.mode_gate import Mode, ModeGate
from intake_engine.results import (
    CardinalityViolation,
    MutationApplied,
    MutationDenied,
    RecoverableSchemaDrift,
)


@pytest.fixture(scope="module")
def config():
    return load_default_config()


@pytest.fixture
def gate():
    return ModeGate()


@pytest.fixture
def store(config, gate):
    return FieldStore(config, gate, ConditionalResolver(config))


# ========================
# Writes
# ========================

def test_update_field_replaces_value(store):
    result = store.update_field("basic", "client_id", "C-100")
    assert isinstance(result, MutationApplied)
    assert result.fields == ("client_id",)
    assert store.snapshot("basic") == {"client_id": "C-100"}
    
    store.update_field("basic", "client_id", "C-200")
    assert store.get_field("basic", "client_id") == "C-200"


def test_update_field_clears_dependent(store):
    store.update_section("cognitive", {"memory_concerns": True, "memory_concerns_frequency": "Often"})
    
    result = store.update_field("cognitive", "memory_concerns", False)
    
    assert result.cleared == ("memory_concerns_frequency",)
    snapshot = store.snapshot("cognitive")
    assert snapshot["memory_concerns"] is False
    assert snapshot["memory_concerns_frequency"] == ""


def test_update_section_resolves_against_final_batch(store):
    """Trigger and dependent in one batch: writes land before the resolver reads"""
    result = store.update_section("cognitive", {
        "memory_concerns_frequency": "Often",
        "memory_concerns": True,
    })
    assert result.cleared == ()
    assert store.get_field("cognitive", "memory_concerns_frequency") == "Often"
    
    result = store.update_section("cognitive", {
        "memory_concerns": False,
        "memory_concerns_frequency": "Sometimes",
    })
    assert result.cleared == ("memory_concerns_frequency",)
    assert store.get_field("cognitive", "memory_concerns_frequency") == ""


def test_unknown_field_writes_nothing(store):
    store.update_field("basic", "client_id", "C-1")
    
    with pytest.raises(ValueError, match="not declared"):
        store.update_section("basic", {"referral_source": "Hospital", "favourite_colour": "blue"})
    
    assert store.snapshot("basic") == {"client_id": "C-1"}


def test_unknown_section_raises(store):
    with pytest.raises(ValueError, match="does not exist"):
        store.update_field("medical_history", "diagnosis", "x")
    with pytest.raises(ValueError, match="does not exist"):
        store.snapshot("medical_history")


def test_wrong_kind_is_stored(store):
    """Kind mismatches are the Validator's job, not the write path's"""
    result = store.update_field("functional", "adl_bathing", "two")
    assert result.ok
    assert store.get_field("functional", "adl_bathing") == "two"


# ========================
# Mode gate
# ========================

@pytest.mark.parametrize("mode", [Mode.VIEW, Mode.PRINT])
def test_denied_outside_edit(store, gate, mode):
    store.update_field("basic", "client_id", "C-1")
    gate.set_mode(mode)
    
    results = [
        store.update_field("basic", "client_id", "C-2"),
        store.update_section("basic", {"referral_source": "Self"}),
        store.load_section("basic", {}),
    ]
    
    for result in results:
        assert isinstance(result, MutationDenied)
        assert result.mode == mode.value
        assert not result.ok
    assert store.snapshot("basic") == {"client_id": "C-1"}


# ========================
# Cardinality
# ========================

def test_single_category_rejects_two_entries(store):
    entries = [{"id": "a", "display_name": "One"}, {"id": "b", "display_name": "Two"}]
    result = store.update_field("care_providers", "primary_care_provider", entries)
    
    assert isinstance(result, CardinalityViolation)
    assert result.existing_count == 2
    assert store.get_field("care_providers", "primary_care_provider") is None


def test_multiple_category_accepts_many(store):
    entries = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
    assert store.update_field("care_providers", "consulting_physicians", entries).ok


# ========================
# Snapshots and audit
# ========================

def test_snapshot_is_a_copy(store):
    store.update_field("basic", "consultation_reasons", ["Memory"])
    snapshot = store.snapshot("basic")
    snapshot["consultation_reasons"].append("Falls")
    assert store.get_field("basic", "consultation_reasons") == ["Memory"]


def test_written_value_is_copied(store):
    reasons = ["Memory"]
    store.update_field("basic", "consultation_reasons", reasons)
    reasons.append("Falls")
    assert store.get_field("basic", "consultation_reasons") == ["Memory"]


def test_audit_hook_sees_writes_and_clears(store):
    changes = []
    store.add_audit_hook(changes.append)
    
    store.update_field("cognitive", "disorientation", True)
    store.update_field("cognitive", "disorientation_frequency", "Rarely")
    store.update_field("cognitive", "disorientation", False)
    
    assert [(c.field, c.value, c.source) for c in changes] == [
        ("disorientation", True, "caller"),
        ("disorientation_frequency", "Rarely", "caller"),
        ("disorientation", False, "caller"),
        ("disorientation_frequency", "", "resolver"),
    ]
    assert changes[-1].previous == "Rarely"


def test_failing_audit_hook_does_not_undo_commit(store):
    seen = []
    
    def broken_hook(change):
        raise RuntimeError("audit sink offline")
    
    store.add_audit_hook(broken_hook)
    store.add_audit_hook(seen.append)
    
    result = store.update_section("basic", {"client_id": "C-7", "assessment_date": "2024-03-01"})
    
    assert isinstance(result, MutationApplied)
    assert store.snapshot("basic") == {"client_id": "C-7", "assessment_date": "2024-03-01"}
    assert [c.field for c in seen] == ["client_id", "assessment_date"]


def test_denied_write_not_audited(store, gate):
    changes = []
    store.add_audit_hook(changes.append)
    gate.set_mode(Mode.VIEW)
    store.update_field("basic", "client_id", "C-1")
    assert changes == []


def test_load_section_replaces_and_resolves(store):
    store.update_section("mental", {"gds_q1": True, "referral_notes": "old"})
    changes = []
    store.add_audit_hook(changes.append)
    
    result = store.load_section("mental", {"mental_health_referral": False, "referral_notes": "Call Dr. Ray"})
    
    assert result.cleared == ("referral_notes",)
    assert store.snapshot("mental") == {"mental_health_referral": False, "referral_notes": ""}
    assert ("gds_q1", "load") in [(c.field, c.source) for c in changes]


def test_restore_from_stored_sections(config, gate):
    store = FieldStore(config, gate, sections={"basic": {"client_id": "C-9"}, "retired": {"x": 1}})
    assert store.snapshot("basic") == {"client_id": "C-9"}
    assert store.snapshot("summary") == {}


# ========================
# Schema drift
# ========================

def test_non_list_entity_value_reads_as_empty(config, gate):
    store = FieldStore(config, gate, sections={"care_providers": {"pharmacy": "Main St Pharmacy"}})
    
    assert store.read_entity_list("care_providers", "pharmacy") == []
    assert store.read_entity_list("care_providers", "pharmacy") == []
    assert store.schema_drift == [
        RecoverableSchemaDrift(section_key="care_providers", field="pharmacy", found_type="str")
    ]


def test_non_dict_items_skipped(config, gate):
    store = FieldStore(config, gate, sections={
        "care_providers": {"other_providers": [{"id": "a"}, "loose note", 7]}
    })
    assert store.read_entity_list("care_providers", "other_providers") == [{"id": "a"}]
    assert {d.found_type for d in store.schema_drift} == {"list[str]", "list[int]"}


def test_provider_records_stored_as_dicts(store):
    record = Provider(id="p1", display_name="Dr. Adams", phone="555-0101")
    result = store.update_field("care_providers", "consulting_physicians", [record])
    
    assert isinstance(result, MutationApplied)
    assert store.get_field("care_providers", "consulting_physicians") == [record.to_dict()]
    assert store.read_entity_list("care_providers", "consulting_physicians") == [record.to_dict()]
    assert store.schema_drift == []


def test_missing_entity_list_is_not_drift(store):
    assert store.read_entity_list("care_providers", "dentist") == []
    assert store.schema_drift == []
