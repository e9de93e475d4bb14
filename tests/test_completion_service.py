"""Tests for recording, reading and annotating task completions."""

import pytest

from keel.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from keel.models import db
from keel.models.completion import CompletionAttachment, TaskCompletion
from keel.services import assignment_service, completion_service as svc


@pytest.fixture()
def on_tanker(fleet):
    """ACTIVE posting of the deck cadet on the tanker."""
    return assignment_service.create_assignment(fleet.deck_cadet.id, fleet.tanker.id, "2024-01-10")


def _completion_count():
    return db.session.query(TaskCompletion).count()


class TestRecordCompletion:
    def test_records_signed_completion(self, fleet, on_tanker):
        c = svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen", remarks="Drill on 12 Jan")

        assert c.id is not None
        assert c.assignment_id == on_tanker.id
        assert c.task_template_id == fleet.a1.id
        assert c.signed_by == "C/O Hansen"
        assert c.remarks == "Drill on 12 Jan"
        assert c.completed_at is not None

    def test_records_attachments(self, fleet, on_tanker):
        c = svc.record_completion(
            on_tanker.id, fleet.a1.id, "C/O Hansen",
            attachments=[
                {"file_name": "muster.jpg", "file_url": "s3://evidence/muster.jpg"},
                {"file_name": "lifeboat.pdf", "file_url": "s3://evidence/lifeboat.pdf"},
            ],
        )
        assert [a.file_name for a in c.attachments] == ["muster.jpg", "lifeboat.pdf"]

    def test_ship_type_restricted_task_applies_on_matching_vessel(self, fleet, on_tanker):
        c = svc.record_completion(on_tanker.id, fleet.b1.id, "C/O Hansen")
        assert c.task_template_id == fleet.b1.id

    def test_duplicate_is_conflict_and_original_kept(self, fleet, on_tanker):
        original = svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen", remarks="first")
        original_id = original.id

        with pytest.raises(ConflictError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "2/O Lind", remarks="second")

        db.session.expire_all()
        kept = db.session.get(TaskCompletion, original_id)
        assert kept.signed_by == "C/O Hansen"
        assert kept.remarks == "first"
        assert _completion_count() == 1

    def test_unique_constraint_backs_duplicate_check(self, fleet, on_tanker, monkeypatch):
        svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen")
        monkeypatch.setattr(svc, "_find_completion", lambda assignment_id, task_id: None)

        with pytest.raises(ConflictError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "2/O Lind")
        assert _completion_count() == 1

    def test_closed_assignment_is_frozen(self, fleet, on_tanker):
        assignment_service.close_assignment(on_tanker.id, "2024-06-01", "COMPLETED")

        with pytest.raises(InvalidStateError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen")
        assert _completion_count() == 0

    def test_category_mismatch_rejected(self, fleet, on_tanker):
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.a5.id, "C/E Berg")
        assert _completion_count() == 0

    def test_other_ship_type_section_rejected(self, fleet, on_tanker):
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.c1.id, "C/O Hansen")
        assert _completion_count() == 0

    @pytest.mark.parametrize("signer", [None, "", "   "])
    def test_signed_by_required(self, fleet, on_tanker, signer):
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.a1.id, signer)

    @pytest.mark.parametrize("attachments", [
        "muster.jpg",
        [{"file_name": "muster.jpg"}],
        [{"file_url": "s3://x"}],
        ["s3://x"],
    ])
    def test_malformed_attachments(self, fleet, on_tanker, attachments):
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen", attachments=attachments)
        assert db.session.query(CompletionAttachment).count() == 0

    def test_unknown_assignment(self, fleet):
        with pytest.raises(NotFoundError):
            svc.record_completion(9999, fleet.a1.id, "C/O Hansen")

    def test_unknown_task(self, fleet, on_tanker):
        with pytest.raises(NotFoundError):
            svc.record_completion(on_tanker.id, 9999, "C/O Hansen")

    def test_close_landing_after_lock_discards_insert(self, fleet, on_tanker, monkeypatch):
        monkeypatch.setattr(svc, "_still_active", lambda assignment_id: False)

        with pytest.raises(InvalidStateError):
            svc.record_completion(
                on_tanker.id, fleet.a1.id, "C/O Hansen",
                attachments=[{"file_name": "muster.jpg", "file_url": "s3://evidence/muster.jpg"}],
            )
        assert _completion_count() == 0
        assert db.session.query(CompletionAttachment).count() == 0


class TestRecordCompletionCheckOrder:
    """The first failing check decides the error when several inputs are bad."""

    def test_closed_assignment_before_signer(self, fleet, on_tanker):
        assignment_service.close_assignment(on_tanker.id, "2024-06-01", "COMPLETED")
        with pytest.raises(InvalidStateError):
            svc.record_completion(on_tanker.id, 9999, "", attachments="bad")

    def test_unknown_task_before_attachments(self, fleet, on_tanker):
        with pytest.raises(NotFoundError):
            svc.record_completion(on_tanker.id, 9999, "", attachments="bad")

    def test_applicability_before_signer(self, fleet, on_tanker):
        with pytest.raises(ValidationError) as exc:
            svc.record_completion(on_tanker.id, fleet.c1.id, "", attachments="bad")
        assert "applicable" in str(exc.value)

    def test_signer_before_duplicate(self, fleet, on_tanker):
        svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen")
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "  ")

    def test_attachments_before_duplicate(self, fleet, on_tanker):
        svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen")
        with pytest.raises(ValidationError):
            svc.record_completion(on_tanker.id, fleet.a1.id, "2/O Lind", attachments="bad")


class TestReadCompletions:
    def test_map_keyed_by_task(self, fleet, on_tanker):
        svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen")
        svc.record_completion(on_tanker.id, fleet.a4.id, "C/O Hansen")

        completions = svc.get_completions_for_assignment(on_tanker.id)

        assert set(completions) == {fleet.a1.id, fleet.a4.id}
        assert completions[fleet.a1.id].signed_by == "C/O Hansen"

    def test_empty_for_new_assignment(self, on_tanker):
        assert svc.get_completions_for_assignment(on_tanker.id) == {}

    def test_unknown_assignment(self, fleet):
        with pytest.raises(NotFoundError):
            svc.get_completions_for_assignment(9999)


class TestUpdateRemarks:
    def test_replaces_remarks_only(self, fleet, on_tanker):
        c = svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen", remarks="old")
        completed_at = c.completed_at

        updated = svc.update_remarks(on_tanker.id, fleet.a1.id, "Repeated in heavy weather")

        assert updated.remarks == "Repeated in heavy weather"
        assert updated.remarks_updated_at is not None
        assert updated.signed_by == "C/O Hansen"
        assert updated.completed_at == completed_at

    def test_no_completion_for_task(self, fleet, on_tanker):
        with pytest.raises(NotFoundError):
            svc.update_remarks(on_tanker.id, fleet.a2.id, "nothing to edit")

    def test_frozen_after_close(self, fleet, on_tanker):
        svc.record_completion(on_tanker.id, fleet.a1.id, "C/O Hansen", remarks="kept")
        assignment_service.close_assignment(on_tanker.id, "2024-06-01", "COMPLETED")

        with pytest.raises(InvalidStateError):
            svc.update_remarks(on_tanker.id, fleet.a1.id, "too late")

        db.session.expire_all()
        assert svc.get_completions_for_assignment(on_tanker.id)[fleet.a1.id].remarks == "kept"


class TestEvidence:
    def test_lists_attachment_metadata(self, fleet, on_tanker):
        svc.record_completion(
            on_tanker.id, fleet.a1.id, "C/O Hansen",
            attachments=[{"file_name": "muster.jpg", "file_url": "s3://evidence/muster.jpg"}],
        )
        svc.record_completion(
            on_tanker.id, fleet.b1.id, "C/O Hansen",
            attachments=[{"file_name": "manifold.jpg", "file_url": "s3://evidence/manifold.jpg"}],
        )
        svc.record_completion(on_tanker.id, fleet.a2.id, "C/O Hansen")

        evidence = svc.list_evidence(on_tanker.id)

        assert {e["file_name"] for e in evidence} == {"muster.jpg", "manifold.jpg"}
        by_name = {e["file_name"]: e for e in evidence}
        assert by_name["manifold.jpg"]["task_code"] == "B1"
        assert by_name["manifold.jpg"]["section_id"] == fleet.section_b.id
        assert by_name["muster.jpg"]["file_url"] == "s3://evidence/muster.jpg"
        assert by_name["muster.jpg"]["signed_by"] == "C/O Hansen"

    def test_empty(self, on_tanker):
        assert svc.list_evidence(on_tanker.id) == []

    def test_unknown_assignment(self, fleet):
        with pytest.raises(NotFoundError):
            svc.list_evidence(9999)
