"""Tests for template lookups, authoring and bulk structure import."""

import pytest

from keel.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from keel.models import db
from keel.models.familiarisation import SectionTemplate, TaskTemplate
from keel.services import assignment_service, completion_service, progress_service, trb_service
from keel.services import template_service as svc


# ═════════════════════════════════════════════════════════════════════════════
# Read contract
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicableTasks:
    def test_ordered_by_section_then_task(self, fleet):
        pairs = svc.list_applicable_tasks("DECK", fleet.tanker_type.id)
        assert [(s.section_code, t.task_code) for s, t in pairs] == [
            ("A", "A1"), ("A", "A2"), ("A", "A3"), ("A", "A4"), ("B", "B1"),
        ]

    def test_category_is_case_insensitive(self, fleet):
        assert len(svc.list_applicable_tasks(" deck ", fleet.bulker_type.id)) == 5

    def test_no_ship_type_only_unrestricted_sections(self, fleet):
        pairs = svc.list_applicable_tasks("ENGINE", None)
        assert [t.task_code for _, t in pairs] == ["A5"]

    def test_order_number_wins_over_insertion(self, fleet, make_section, make_task):
        early = make_section("Z", "Bridge", order_number=0)
        make_task(early, "Z1")
        pairs = svc.list_applicable_tasks("DECK", None)
        assert pairs[0][0].section_code == "Z"

    def test_unknown_category(self, fleet):
        with pytest.raises(NotFoundError):
            svc.list_applicable_tasks("PURSER", fleet.tanker_type.id)

    def test_is_task_applicable(self, fleet):
        assert svc.is_task_applicable(fleet.b1, "DECK", fleet.tanker_type.id)
        assert not svc.is_task_applicable(fleet.b1, "DECK", fleet.bulker_type.id)
        assert not svc.is_task_applicable(fleet.a5, "DECK", fleet.tanker_type.id)
        assert svc.is_task_applicable(fleet.a1, "deck", None)


# ═════════════════════════════════════════════════════════════════════════════
# Authoring
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthoring:
    def test_create_section_and_task(self, fleet):
        section = svc.create_section_template({"section_code": "d", "title": "Navigation", "order_number": "4"})
        task = svc.create_task_template(section.id, {
            "task_code": "d1", "task_description": "Chart corrections", "cadet_category": "deck",
        })

        assert section.section_code == "D"
        assert section.order_number == 4
        assert task.task_code == "D1"
        assert task.cadet_category == "DECK"
        assert task.is_mandatory is True

    def test_duplicate_section_code(self, fleet):
        with pytest.raises(ConflictError):
            svc.create_section_template({"section_code": "A", "title": "Again"})

    def test_same_section_code_for_other_ship_type(self, fleet):
        s = svc.create_section_template({
            "section_code": "A", "title": "Tanker safety", "ship_type_id": fleet.tanker_type.id,
        })
        assert s.ship_type_id == fleet.tanker_type.id

    def test_duplicate_task_code_in_section(self, fleet):
        with pytest.raises(ConflictError):
            svc.create_task_template(fleet.section_a.id, {
                "task_code": "A1", "task_description": "dup", "cadet_category": "DECK",
            })

    @pytest.mark.parametrize("data", [
        {"task_description": "no code", "cadet_category": "DECK"},
        {"task_code": "X1", "cadet_category": "DECK"},
        {"task_code": "X1", "task_description": "bad cat", "cadet_category": "PURSER"},
        {"task_code": "X1", "task_description": "bad order", "cadet_category": "DECK", "order_number": "first"},
        {"task_code": "X1", "task_description": "fraction", "cadet_category": "DECK", "order_number": 1.7},
        {"task_code": "X1", "task_description": "bool order", "cadet_category": "DECK", "order_number": True},
        {"task_code": "X1", "task_description": "text flag", "cadet_category": "DECK", "is_mandatory": "false"},
        {"task_code": "X1", "task_description": "int flag", "cadet_category": "DECK", "is_mandatory": 0},
    ])
    def test_task_validation(self, fleet, data):
        with pytest.raises(ValidationError):
            svc.create_task_template(fleet.section_a.id, data)
        assert db.session.query(TaskTemplate).filter_by(task_code="X1").count() == 0

    def test_section_for_unknown_ship_type(self, fleet):
        with pytest.raises(NotFoundError):
            svc.create_section_template({"section_code": "Z", "title": "Ghost", "ship_type_id": 9999})
        assert db.session.query(SectionTemplate).filter_by(section_code="Z").count() == 0

    def test_section_ship_type_must_be_integer(self, fleet):
        with pytest.raises(ValidationError):
            svc.create_section_template({"section_code": "Z", "title": "Ghost", "ship_type_id": 1.5})

    def test_update_unreferenced_task(self, fleet):
        task = svc.update_task_template(fleet.a3.id, {"task_description": "Updated", "is_mandatory": False})
        assert task.task_description == "Updated"
        assert task.is_mandatory is False
        assert task.task_code == "A3"
        assert task.id != fleet.a3.id

        db.session.expire_all()
        old = db.session.get(TaskTemplate, fleet.a3.id)
        assert old.task_description == "Familiarise with A3"
        assert old.retired_in == task.introduced_in
        assert not old.is_current

    def test_update_without_changes_keeps_row(self, fleet):
        task = svc.update_task_template(fleet.a3.id, {"task_description": "Familiarise with A3"})
        assert task.id == fleet.a3.id
        assert svc.current_revision() == 0

    @pytest.mark.parametrize("data", [
        {"is_mandatory": "false"},
        {"is_mandatory": 1},
        {"order_number": 2.5},
    ])
    def test_update_rejects_loose_types(self, fleet, data):
        with pytest.raises(ValidationError):
            svc.update_task_template(fleet.a3.id, data)
        db.session.expire_all()
        assert db.session.get(TaskTemplate, fleet.a3.id).is_current

    def test_retired_task_cannot_be_edited(self, fleet):
        svc.update_task_template(fleet.a3.id, {"task_description": "Updated"})
        with pytest.raises(InvalidStateError):
            svc.update_task_template(fleet.a3.id, {"task_description": "Again"})

    def test_referenced_task_is_immutable(self, fleet):
        a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
        completion_service.record_completion(a.id, fleet.a1.id, "C/O Hansen")

        with pytest.raises(InvalidStateError):
            svc.update_task_template(fleet.a1.id, {"task_description": "Rewritten"})

        db.session.expire_all()
        assert db.session.get(TaskTemplate, fleet.a1.id).task_description == "Familiarise with A1"


# ═════════════════════════════════════════════════════════════════════════════
# import_structure
# ═════════════════════════════════════════════════════════════════════════════


def _row(section_code, task_code, **overrides):
    row = {
        "cadet_category": "DECK",
        "section_code": section_code,
        "section_title": f"Section {section_code}",
        "section_order": 1,
        "task_code": task_code,
        "task_description": f"Task {task_code}",
        "task_order": 1,
    }
    row.update(overrides)
    return row


class TestImportStructure:
    def test_creates_sections_and_tasks(self):
        counts = svc.import_structure([
            _row("S", "S1"),
            _row("S", "S2", task_order=2, is_mandatory=False),
            _row("T", "T1", section_order=2, cadet_category="engine"),
        ])

        assert counts == {
            "sections_created": 2,
            "sections_updated": 0,
            "tasks_created": 3,
            "tasks_updated": 0,
            "tasks_skipped": 0,
            "revision": 1,
        }
        assert db.session.query(SectionTemplate).count() == 2
        s2 = db.session.query(TaskTemplate).filter_by(task_code="S2").one()
        assert s2.is_mandatory is False

    def test_skip_leaves_existing_rows(self, fleet):
        counts = svc.import_structure([_row("A", "A1", task_description="changed")])

        assert counts["tasks_skipped"] == 1
        db.session.expire_all()
        assert db.session.get(TaskTemplate, fleet.a1.id).task_description == "Familiarise with A1"

    def test_update_rewrites_unreferenced_rows(self, fleet):
        counts = svc.import_structure(
            [_row("A", "A2", task_description="Muster stations", section_title="Safety & Survival")],
            conflict_strategy="UPDATE",
        )

        assert counts["tasks_updated"] == 1
        assert counts["sections_updated"] == 1
        db.session.expire_all()
        current = db.session.query(TaskTemplate).filter_by(task_code="A2", retired_in=None).one()
        assert current.task_description == "Muster stations"
        assert current.introduced_in == counts["revision"]
        old = db.session.get(TaskTemplate, fleet.a2.id)
        assert old.task_description == "Familiarise with A2"
        assert old.retired_in == counts["revision"]
        assert db.session.get(SectionTemplate, fleet.section_a.id).title == "Safety & Survival"

    def test_update_refuses_referenced_task_and_rolls_back(self, fleet):
        a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
        completion_service.record_completion(a.id, fleet.a1.id, "C/O Hansen")

        with pytest.raises(InvalidStateError):
            svc.import_structure(
                [_row("N", "N1"), _row("A", "A1", task_description="Rewritten")],
                conflict_strategy="UPDATE",
            )

        assert db.session.query(SectionTemplate).filter_by(section_code="N").count() == 0
        assert db.session.get(TaskTemplate, fleet.a1.id).task_description == "Familiarise with A1"

    def test_invalid_row_rolls_back_whole_import(self):
        with pytest.raises(ValidationError):
            svc.import_structure([_row("S", "S1"), _row("S", "S2", cadet_category="PURSER")])
        assert db.session.query(TaskTemplate).count() == 0

    @pytest.mark.parametrize("rows", [None, [], "rows"])
    def test_rows_required(self, rows):
        with pytest.raises(ValidationError):
            svc.import_structure(rows)

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError):
            svc.import_structure([_row("S", "S1")], conflict_strategy="OVERWRITE")

    def test_update_refuses_referenced_section_even_for_new_task(self, fleet):
        a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
        completion_service.record_completion(a.id, fleet.a1.id, "C/O Hansen")

        with pytest.raises(InvalidStateError):
            svc.import_structure([_row("A", "A9", section_title="Renamed")], conflict_strategy="UPDATE")

        assert db.session.get(SectionTemplate, fleet.section_a.id).title == "Safety"

    def test_skip_adds_new_task_to_referenced_section(self, fleet):
        a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
        completion_service.record_completion(a.id, fleet.a1.id, "C/O Hansen")

        counts = svc.import_structure([_row("A", "A9", task_order=9)])

        assert counts["tasks_created"] == 1
        assert counts["sections_created"] == 0
        pairs = progress_service.compute_overall_progress(a)["sections"][0]["tasks"]
        assert "A9" not in [t["task_code"] for t in pairs]

    def test_unknown_ship_type_rolls_back(self, fleet):
        with pytest.raises(NotFoundError):
            svc.import_structure([_row("N", "N1"), _row("Q", "Q1", ship_type_id=9999)])
        assert db.session.query(SectionTemplate).filter_by(section_code="N").count() == 0
        assert svc.current_revision() == 0

    @pytest.mark.parametrize("overrides", [
        {"is_mandatory": "false"},
        {"task_order": 1.7},
        {"section_order": "1.5"},
        {"ship_type_id": "tanker"},
    ])
    def test_loose_types_are_rejected(self, overrides):
        with pytest.raises(ValidationError):
            svc.import_structure([_row("P", "P1"), _row("S", "S1", **overrides)])
        assert db.session.query(TaskTemplate).count() == 0

    def test_strategy_is_case_sensitive(self):
        with pytest.raises(ValidationError):
            svc.import_structure([_row("S", "S1")], conflict_strategy="update")

    def test_update_with_identical_rows_opens_no_revision(self, fleet):
        counts = svc.import_structure(
            [_row("A", "A1", task_description="Familiarise with A1", section_title="Safety")],
            conflict_strategy="UPDATE",
        )
        assert counts["tasks_skipped"] == 1
        assert counts["revision"] is None


# ═════════════════════════════════════════════════════════════════════════════
# Catalog versioning
# ═════════════════════════════════════════════════════════════════════════════


def _complete_tanker_assignment(fleet):
    a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
    for task in (fleet.a1, fleet.a2, fleet.a3, fleet.b1):
        completion_service.record_completion(a.id, task.id, "C/O Hansen")
    assignment_service.close_assignment(a.id, "2024-06-01", "COMPLETED")
    return a


class TestCatalogVersioning:
    def test_template_edits_leave_closed_assignment_untouched(self, fleet):
        _complete_tanker_assignment(fleet)
        before = trb_service.generate_summary(fleet.deck_cadet.id, fleet.tanker.id)
        assert before["overall_percent"] == 100

        svc.create_task_template(fleet.section_a.id, {
            "task_code": "A9", "task_description": "Lifeboat drill", "cadet_category": "DECK",
        })
        svc.update_task_template(fleet.a4.id, {"is_mandatory": True})
        svc.import_structure([_row("A", "A8", task_order=8), _row("N", "N1", section_order=9)])

        after = trb_service.generate_summary(fleet.deck_cadet.id, fleet.tanker.id)
        assert after["overall_percent"] == 100
        assert after["total_mandatory"] == before["total_mandatory"] == 4
        assert after["outstanding_mandatory"] == []
        assert [s["section_code"] for s in after["sections"]] == ["A", "B"]

    def test_new_assignment_sees_current_catalog(self, fleet):
        _complete_tanker_assignment(fleet)
        svc.create_task_template(fleet.section_a.id, {
            "task_code": "A9", "task_description": "Lifeboat drill", "cadet_category": "DECK", "order_number": 9,
        })
        svc.update_task_template(fleet.a4.id, {"is_mandatory": True})

        fresh = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.bulker.id, "2024-07-01")

        assert fresh.catalog_revision == svc.current_revision() == 2
        progress = progress_service.compute_overall_progress(fresh)
        codes = [t["task_code"] for s in progress["sections"] for t in s["tasks"]]
        assert codes == ["A1", "A2", "A3", "A4", "A9", "C1"]
        assert progress["total_mandatory"] == 6

    def test_active_assignment_keeps_its_revision(self, fleet):
        a = assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")
        added = svc.create_task_template(fleet.section_a.id, {
            "task_code": "A9", "task_description": "Lifeboat drill", "cadet_category": "DECK",
        })
        successor = svc.update_task_template(fleet.a3.id, {"task_description": "Fire pumps"})

        with pytest.raises(ValidationError):
            completion_service.record_completion(a.id, added.id, "C/O Hansen")
        with pytest.raises(ValidationError):
            completion_service.record_completion(a.id, successor.id, "C/O Hansen")

        completion = completion_service.record_completion(a.id, fleet.a3.id, "C/O Hansen")
        assert completion.task_template_id == fleet.a3.id
        section_a = progress_service.compute_overall_progress(a)["sections"][0]
        assert [t["task_code"] for t in section_a["tasks"]] == ["A1", "A2", "A3", "A4"]
        assert section_a["tasks"][2]["task_description"] == "Familiarise with A3"

    def test_visibility_window(self, fleet):
        successor = svc.update_task_template(fleet.a3.id, {"task_description": "Fire pumps"})
        db.session.expire_all()
        old = db.session.get(TaskTemplate, fleet.a3.id)

        assert old.visible_at(0) and not old.visible_at(successor.introduced_in)
        assert successor.visible_at(successor.introduced_in) and not successor.visible_at(0)
        assert not old.visible_at(None) and successor.visible_at(None)
