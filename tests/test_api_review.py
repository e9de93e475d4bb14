"""HTTP tests for the sign-off review endpoints and the audit timeline."""

import pytest

BASE = "/api/v1"


def _as(role):
    return {"X-Actor-Role": role, "X-Actor-Id": f"{role.lower()}-1"}


@pytest.fixture()
def signed(client, fleet):
    res = client.post(f"{BASE}/assignments", json={
        "cadet_id": fleet.deck_cadet.id, "vessel_id": fleet.tanker.id, "start_date": "2024-01-10",
    })
    assignment = res.get_json()
    for task in (fleet.a1, fleet.a2):
        client.post(f"{BASE}/assignments/{assignment['id']}/completions",
                    json={"task_template_id": task.id, "signed_by": "C/O Hansen"})
    return assignment


class TestReviewEndpoints:
    def test_section_chain(self, client, fleet, signed):
        url = f"{BASE}/assignments/{signed['id']}/sections/{fleet.section_a.id}"

        res = client.post(f"{url}/submit", headers=_as("CADET"))
        assert res.status_code == 200
        assert res.get_json()["updated_count"] == 2

        res = client.post(f"{url}/review", json={"status": "CTO_APPROVED"}, headers=_as("CTO"))
        assert res.status_code == 200

        res = client.post(f"{url}/review", json={"status": "MASTER_APPROVED"}, headers=_as("MASTER"))
        assert res.get_json() == {
            "section_id": fleet.section_a.id, "review_status": "MASTER_APPROVED", "updated_count": 2,
        }

    def test_wrong_role_403(self, client, fleet, signed):
        url = f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}/review"
        client.post(url, json={"status": "SUBMITTED"}, headers=_as("CADET"))

        res = client.post(url, json={"status": "CTO_APPROVED"}, headers=_as("MASTER"))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_role_403(self, client, fleet, signed):
        res = client.post(f"{BASE}/assignments/{signed['id']}/sections/{fleet.section_a.id}/submit")
        assert res.status_code == 403

    def test_reject_without_comment_400(self, client, fleet, signed):
        url = f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}/review"
        client.post(url, json={"status": "SUBMITTED"}, headers=_as("CADET"))

        assert client.post(url, json={"status": "REJECTED"}, headers=_as("CTO")).status_code == 400
        res = client.post(url, json={"status": "REJECTED", "comment": "Redo the drill"}, headers=_as("CTO"))
        assert res.status_code == 200
        assert res.get_json()["review_status"] == "REJECTED"

    def test_master_approved_is_409(self, client, fleet, signed):
        url = f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}/review"
        for role, status in (("CADET", "SUBMITTED"), ("CTO", "CTO_APPROVED"), ("MASTER", "MASTER_APPROVED")):
            assert client.post(url, json={"status": status}, headers=_as(role)).status_code == 200

        res = client.post(url, json={"status": "REJECTED", "comment": "late"}, headers=_as("MASTER"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

        res = client.patch(f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}",
                           json={"remarks": "edited"})
        assert res.status_code == 409

    def test_history(self, client, fleet, signed):
        url = f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}"
        client.post(f"{url}/review", json={"status": "SUBMITTED"}, headers=_as("CADET"))

        body = client.get(f"{url}/reviews").get_json()
        assert body["total"] == 1
        assert body["items"][0]["actor_role"] == "CADET"
        assert body["items"][0]["actor_id"] == "cadet-1"

    def test_pending_queue_defaults_to_caller_role(self, client, fleet, signed):
        client.post(f"{BASE}/assignments/{signed['id']}/sections/{fleet.section_a.id}/submit",
                    headers=_as("CADET"))

        body = client.get(f"{BASE}/reviews/pending", headers=_as("CTO")).get_json()
        assert body["role"] == "CTO"
        assert body["total"] == 2
        assert client.get(f"{BASE}/reviews/pending?role=MASTER").get_json()["total"] == 0
        assert client.get(f"{BASE}/reviews/pending").status_code == 400

    def test_timeline(self, client, fleet, signed):
        client.post(f"{BASE}/assignments/{signed['id']}/completions/{fleet.a1.id}/review",
                    json={"status": "SUBMITTED"}, headers=_as("CADET"))

        body = client.get(f"{BASE}/assignments/{signed['id']}/timeline").get_json()
        assert [e["event_type"] for e in body["items"]] == [
            "ASSIGNMENT_CREATED", "TASK_COMPLETED", "TASK_COMPLETED", "SUBMITTED",
        ]

    def test_timeline_unknown_assignment_404(self, client, fleet):
        assert client.get(f"{BASE}/assignments/404/timeline").status_code == 404
