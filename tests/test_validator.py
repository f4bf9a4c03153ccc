"""
Test Section Validator - declared rules over section snapshots

Run with: pytest tests/test_validator.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from intake_engine.config import load_default_config
from intake_engine.contracts import ValidationError
from intake_engine.core.validator import SectionValidator


@pytest.fixture(scope="module")
def validator():
    return SectionValidator(load_default_config())


def full_functional():
    data = {key: 2 for key in (
        "adl_bathing", "adl_dressing", "adl_toileting", "adl_transferring", "adl_continence", "adl_feeding",
        "iadl_phone", "iadl_shopping", "iadl_food_prep", "iadl_housekeeping",
        "iadl_laundry", "iadl_transportation", "iadl_medications", "iadl_finances",
    )}
    return data


# ========================
# Required rules
# ========================

def test_empty_cognitive_reports_required_in_rule_order(validator):
    errors = validator.validate("cognitive", {})
    assert [e.field for e in errors] == [
        "memory_concerns", "others_concerns", "significant_dates", "disorientation"
    ]
    assert errors[0].message == "Memory concerns is required"
    assert all(e.severity == "error" for e in errors)


def test_false_answer_satisfies_required(validator):
    data = {q: False for q in ("memory_concerns", "others_concerns", "significant_dates", "disorientation")}
    assert validator.validate("cognitive", data) == []


def test_custom_message(validator):
    errors = validator.validate("basic", {"assessment_date": "2024-03-01", "consultation_reasons": ["Falls"]})
    assert errors == [ValidationError(field="client_id", message="A client must be selected")]


def test_blank_text_is_missing(validator):
    errors = validator.validate("summary", {"additional_comments": "   ", "assessment_completion_date": "2024-03-01"})
    assert [e.field for e in errors] == ["additional_comments"]


def test_empty_list_is_missing(validator):
    errors = validator.validate("basic", {
        "client_id": "C-1", "assessment_date": "2024-03-01", "consultation_reasons": []
    })
    assert [e.message for e in errors] == ["At least one reason for consultation must be selected"]


# ========================
# Conditional required
# ========================

def test_frequency_required_when_yes(validator):
    data = {"memory_concerns": True, "others_concerns": False, "significant_dates": False, "disorientation": False}
    errors = validator.validate("cognitive", data)
    assert errors == [ValidationError(field="memory_concerns_frequency", message="Memory concerns frequency is required")]
    
    data["memory_concerns_frequency"] = "Often"
    assert validator.validate("cognitive", data) == []


def test_fall_count_required_when_falls_reported(validator):
    data = full_functional()
    data["falls_in_past_year"] = True
    errors = validator.validate("functional", data)
    assert [e.message for e in errors] == ["Number of falls is required when falls are reported"]
    
    data["fall_count"] = 0
    assert validator.validate("functional", data) == []


# ========================
# Format and range
# ========================

def test_one_of(validator):
    data = {q: True for q in ("memory_concerns", "others_concerns", "significant_dates", "disorientation")}
    data.update({
        "memory_concerns_frequency": "Always",
        "others_concerns_frequency": "Often",
        "significant_dates_frequency": "Rarely",
        "disorientation_frequency": "Regularly",
    })
    errors = validator.validate("cognitive", data)
    assert errors == [ValidationError(
        field="memory_concerns_frequency",
        message="Memory concerns frequency must be one of: Rarely, Sometimes, Often, Regularly",
    )]


def test_one_of_element_wise_for_lists(validator):
    data = full_functional()
    data.update({"uses_assistive_equipment": True, "equipment": ["Walker", "Jetpack"]})
    errors = validator.validate("functional", data)
    assert [e.field for e in errors] == ["equipment"]


def test_pattern(validator):
    data = {"client_id": "C-1", "assessment_date": "03/01/2024", "consultation_reasons": ["Falls"]}
    errors = validator.validate("basic", data)
    assert [e.message for e in errors] == ["Assessment date must be YYYY-MM-DD"]


def test_range(validator):
    data = full_functional()
    data["adl_feeding"] = 3
    data["fall_count"] = -1
    errors = validator.validate("functional", data)
    assert [e.message for e in errors] == [
        "Adl feeding must be between 0 and 2",
        "Fall count must be at least 0",
    ]


# ========================
# Kind checks
# ========================

def test_kind_errors_come_first_in_template_order(validator):
    data = full_functional()
    data["iadl_finances"] = "two"
    data["adl_bathing"] = True
    errors = validator.validate("functional", data)
    assert [e.message for e in errors] == [
        "Adl bathing must be a number",
        "Iadl finances must be a number",
    ]


def test_non_finite_numbers_are_kind_errors(validator):
    data = full_functional()
    data["adl_bathing"] = float("nan")
    data["fall_count"] = float("inf")
    errors = validator.validate("functional", data)
    assert [e.message for e in errors] == [
        "Adl bathing must be a number",
        "Fall count must be a number",
    ]


def test_string_list_kind(validator):
    errors = validator.validate("basic", {
        "client_id": "C-1", "assessment_date": "2024-03-01", "consultation_reasons": "Falls"
    })
    assert errors[0] == ValidationError(field="consultation_reasons", message="Consultation reasons must be a list of options")


# ========================
# Sub-entity categories
# ========================

def test_required_category_empty(validator):
    errors = validator.validate("care_providers", {})
    assert errors == [ValidationError(
        field="primary_care_provider",
        message="Primary Care Provider (PCP): at least one provider is required",
    )]


def test_required_category_present(validator):
    data = {"primary_care_provider": [{"id": "a", "display_name": "Dr. Lee", "phone": "555-0100"}]}
    assert validator.validate("care_providers", data) == []


def test_non_list_category_counts_as_empty(validator):
    errors = validator.validate("care_providers", {"primary_care_provider": "Dr. Lee"})
    assert [e.field for e in errors] == ["primary_care_provider"]


def test_blank_placeholder_does_not_satisfy_category(validator):
    data = {"primary_care_provider": [{"id": "a", "display_name": "", "phone": ""}]}
    errors = validator.validate("care_providers", data)
    assert [e.field for e in errors] == ["primary_care_provider"]


def test_non_dict_items_do_not_satisfy_category(validator):
    errors = validator.validate("care_providers", {"primary_care_provider": ["junk", 7, None]})
    assert [e.field for e in errors] == ["primary_care_provider"]


def test_saved_entry_counts_alongside_drift_items(validator):
    data = {"primary_care_provider": ["junk", {"id": "a", "display_name": "Dr. Lee", "phone": "555-0100"}]}
    assert validator.validate("care_providers", data) == []


# ========================
# Purity and completion
# ========================

@pytest.mark.parametrize("section_key", ["basic", "cognitive", "functional", "mental", "care_providers", "summary"])
def test_validate_is_idempotent(validator, section_key):
    data = {"memory_concerns": True, "adl_bathing": "x", "gds_q1": "yes", "client_id": 5}
    first = validator.validate(section_key, dict(data))
    second = validator.validate(section_key, dict(data))
    assert first == second


def test_validate_does_not_modify_data(validator):
    data = {"memory_concerns": False, "memory_concerns_frequency": "Often"}
    validator.validate("cognitive", data)
    assert data == {"memory_concerns": False, "memory_concerns_frequency": "Often"}


def test_unknown_section(validator):
    with pytest.raises(ValueError):
        validator.validate("medical_history", {})


def test_completion_percentage(validator):
    assert validator.completion_percentage("cognitive", {}) == 0
    assert validator.completion_percentage("cognitive", {"memory_concerns": True, "others_concerns": False}) == 50
    assert validator.completion_percentage("care_providers", {"primary_care_provider": [{"id": "a"}]}) == 0
    saved = [{"id": "a", "display_name": "Dr. Lee", "phone": "555-0100"}]
    assert validator.completion_percentage("care_providers", {"primary_care_provider": saved}) == 100
