"""
Tests for the rule-based constraint engine.
"""

import pytest

from models import AvailabilityWindow, InventoryItem, Patient, Therapist, TherapyProtocol
from scheduler.constraints import (
    ConstraintType,
    Severity,
    check_patient_contraindications,
    validate_all_constraints,
    validate_material_sufficiency,
    validate_patient_availability,
    validate_room_availability,
    validate_session_gaps,
    validate_therapist_availability,
    validate_therapy_sequence,
)

from helpers import at, make_session


class TestRoomAvailability:

    @pytest.mark.parametrize("start_a,end_a,start_b,end_b", [
        (9, 11, 9, 11),
        (9, 11, 10, 12),
        (9, 13, 10, 11),
        (10, 12, 9, 11),
    ])
    def test_same_room_overlap_is_critical(self, start_a, end_a, start_b, end_b):
        a = make_session("a", at(0, start_a), at(0, end_a))
        b = make_session("b", at(0, start_b), at(0, end_b), therapist_id="emp2")
        result = validate_room_availability([a, b])
        assert not result.valid
        assert all(v.constraint_type == ConstraintType.ROOM_AVAILABILITY for v in result.violations)
        assert all(v.severity == Severity.CRITICAL for v in result.violations)

    def test_back_to_back_is_fine(self):
        a = make_session("a", at(0, 9), at(0, 11))
        b = make_session("b", at(0, 11), at(0, 13))
        assert validate_room_availability([a, b]).valid

    def test_overlap_with_existing_booking(self):
        new = make_session("new", at(0, 9), at(0, 11))
        existing = make_session("old", at(0, 10), at(0, 12), therapist_id="emp9")
        result = validate_room_availability([new], [existing])
        assert not result.valid
        assert result.violations[0].sessions[1].id == "old"

    def test_different_rooms_do_not_clash(self):
        a = make_session("a", at(0, 9), at(0, 11), room_id="room1")
        b = make_session("b", at(0, 9), at(0, 11), room_id="room2")
        assert validate_room_availability([a, b]).valid


class TestSequenceAndGaps:

    def test_backwards_step_is_critical(self, protocol):
        first = make_session("a", at(0, 9), at(0, 11), step_number=2)
        second = make_session("b", at(1, 9), at(1, 11), step_number=1)
        result = validate_therapy_sequence([first, second], protocol)
        assert not result.valid
        assert result.violations[0].severity == Severity.CRITICAL

    def test_in_order_steps_pass(self, protocol):
        sessions = [
            make_session("a", at(0, 9), at(0, 11), step_number=1),
            make_session("b", at(0, 13), at(0, 15), step_number=2),
        ]
        assert validate_therapy_sequence(sessions, protocol).valid

    def test_step_falls_back_to_action_lookup(self, protocol):
        early = make_session("a", at(0, 9), at(0, 11), action="Abhyanga & Swedana")
        late = make_session("b", at(1, 9), at(1, 11), action="Snehapana (Internal Oleation)")
        assert not validate_therapy_sequence([early, late], protocol).valid

    def test_gap_below_minimum_is_critical(self):
        a = make_session("a", at(0, 9), at(0, 11))
        b = make_session("b", at(0, 11), at(0, 13))
        result = validate_session_gaps([a, b])
        assert not result.valid
        assert result.violations[0].constraint_type == ConstraintType.GAP

    def test_wide_gap_is_only_a_warning(self):
        a = make_session("a", at(0, 9), at(0, 11))
        b = make_session("b", at(4, 9), at(4, 11))
        result = validate_session_gaps([a, b])
        assert result.valid
        assert [v.severity for v in result.violations] == [Severity.WARNING]


class TestContraindications:

    def test_matching_condition_is_critical(self, protocol):
        patient = Patient(id="p", conditions=["Cardiac conditions"])
        result = check_patient_contraindications(patient, protocol)
        assert not result.valid
        assert len(result.critical) == 1

    def test_substring_match_is_case_insensitive(self):
        therapy = TherapyProtocol(id="t", name="Vamana", contraindications=["Pregnant women"])
        patient = Patient(id="p", conditions=["PREGNANT"])
        assert not check_patient_contraindications(patient, therapy).valid

    def test_age_thresholds(self):
        therapy = TherapyProtocol(id="t", name="Vamana",
                                  contraindications=["Children under 12", "Elderly over 70"])
        assert not check_patient_contraindications(Patient(id="c", age=8), therapy).valid
        assert not check_patient_contraindications(Patient(id="e", age=75), therapy).valid
        assert check_patient_contraindications(Patient(id="a", age=40), therapy).valid

    @pytest.mark.parametrize("contraindication", ["Pregnancy over 3 months", "Fever over 101", "Under 2 weeks post-op"])
    def test_non_age_thresholds_ignored(self, contraindication):
        therapy = TherapyProtocol(id="t", name="Vamana", contraindications=[contraindication])
        assert check_patient_contraindications(Patient(id="a", age=45), therapy).valid

    def test_age_with_unit(self):
        therapy = TherapyProtocol(id="t", name="Vamana", contraindications=["Not advised over 65 years"])
        assert not check_patient_contraindications(Patient(id="e", age=66), therapy).valid
        assert check_patient_contraindications(Patient(id="a", age=40), therapy).valid

    def test_unrelated_condition_is_eligible(self, protocol, patient):
        assert check_patient_contraindications(patient, protocol).valid


class TestResources:

    def test_unknown_therapist_is_critical(self):
        session = make_session("a", at(0, 9), at(0, 11), therapist_id="ghost")
        assert not validate_therapist_availability([session], []).valid

    def test_therapist_off_shift_is_critical(self):
        therapist = Therapist(id="emp1", skills=["Vamana"], shifts=["Tue"])
        session = make_session("a", at(0, 9), at(0, 11))  # Monday
        result = validate_therapist_availability([session], [therapist])
        assert not result.valid
        assert "Mon" in result.violations[0].message

    def test_missing_skill_is_a_warning(self):
        therapist = Therapist(id="emp1", skills=["Shirodhara"], shifts=["Mon"])
        session = make_session("a", at(0, 9), at(0, 11), type="Vamana")
        result = validate_therapist_availability([session], [therapist])
        assert result.valid
        assert result.violations[0].severity == Severity.WARNING

    def test_missing_material_is_a_warning(self):
        session = make_session("a", at(0, 9), at(0, 11), type="Shirodhara")
        result = validate_material_sufficiency([session], [])
        assert result.valid
        assert result.violations[0].severity == Severity.WARNING

    def test_insufficient_low_stock_is_critical(self):
        sessions = [make_session(f"s{i}", at(i, 9), at(i, 11), type="Shirodhara") for i in range(3)]
        inventory = [InventoryItem(name="Sesame Oil", stock=2, status="low")]
        result = validate_material_sufficiency(sessions, inventory)
        assert not result.valid
        assert result.violations[0].details["needed"] == 3

    def test_insufficient_optimal_stock_is_a_warning(self):
        sessions = [make_session(f"s{i}", at(i, 9), at(i, 11), type="Shirodhara") for i in range(3)]
        inventory = [InventoryItem(name="Sesame Oil", stock=2, status="optimal")]
        result = validate_material_sufficiency(sessions, inventory)
        assert result.valid
        assert result.violations[0].severity == Severity.WARNING

    def test_requirement_overrides(self):
        session = make_session("a", at(0, 9), at(0, 11), type="Nasya")
        inventory = [InventoryItem(name="Anu Taila", stock=0.1, status="low")]
        result = validate_material_sufficiency([session], inventory, {"Nasya": [{"name": "Anu Taila", "quantity": 1}]})
        assert not result.valid

    def test_patient_availability(self):
        patient = Patient(id="p", availability=[AvailabilityWindow(start=at(0, 0), end=at(1, 0))])
        inside = make_session("a", at(0, 9), at(0, 11))
        outside = make_session("b", at(3, 9), at(3, 11))
        assert validate_patient_availability([inside], patient).valid
        assert not validate_patient_availability([outside], patient).valid


class TestCombinedReport:

    def test_summary_counts(self, protocol, patient, therapist):
        a = make_session("a", at(0, 9), at(0, 11), step_number=1)
        b = make_session("b", at(0, 10), at(0, 12), step_number=2)  # same room, overlapping
        report = validate_all_constraints([a, b], protocol, patient, [therapist])

        assert not report.valid
        assert report.summary["critical"] == len(report.critical_violations)
        assert report.summary["total"] == len(report.all_violations)
        assert report.summary["total"] == (
            report.summary["critical"] + report.summary["warnings"] + report.summary["info"]
        )
        assert set(report.results) == {
            "sequence", "gaps", "contraindications", "therapist_availability",
            "room_availability", "material_sufficiency", "patient_availability",
        }
