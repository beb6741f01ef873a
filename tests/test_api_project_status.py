"""HTTP tests for project approvers, status changes and the dashboard."""

from tests.helpers import API, approve, assert_error, configure_approvers


def _configure_project_approvers(client, project_id, approvers, mode="SEQUENTIAL"):
    response = client.post(
        f"{API}/projects/{project_id}/approvers",
        json={"approvers": approvers, "approval_mode": mode, "actor_id": "owner"},
    )
    assert response.status_code == 201
    return response.json()


def _change_status(client, project_id, status, requested_by_id="owner"):
    return client.patch(
        f"{API}/projects/{project_id}/status",
        json={"status": status, "requested_by_id": requested_by_id},
    )


class TestProjectApproversEndpoints:
    def test_configure_and_list(self, client, project):
        created = _configure_project_approvers(client, project.id, ["alice", "bob"])
        assert [(a["user_id"], a["order_index"]) for a in created] == [("alice", 0), ("bob", 1)]
        assert created[0]["name"] == "Alice Adams"

        listed = client.get(f"{API}/projects/{project.id}/approvers").json()
        assert [a["user_id"] for a in listed] == ["alice", "bob"]
        assert client.get(f"{API}/projects/{project.id}").json()["approval_mode"] == "SEQUENTIAL"

    def test_remove_approver(self, client, project):
        created = _configure_project_approvers(client, project.id, ["alice", "bob"])

        response = client.delete(f"{API}/projects/{project.id}/approvers/{created[0]['id']}")
        assert response.status_code == 204

        listed = client.get(f"{API}/projects/{project.id}/approvers").json()
        assert [(a["user_id"], a["order_index"]) for a in listed] == [("bob", 0)]

    def test_invalid_configuration(self, client, project):
        response = client.post(
            f"{API}/projects/{project.id}/approvers", json={"approvers": ["alice", "alice"]}
        )
        assert_error(response, 400, "invalid_configuration", "more than once")

    def test_unknown_project(self, client, users):
        assert_error(client.get(f"{API}/projects/999/approvers"), 404, "not_found")


class TestStatusChangeEndpoints:
    def test_direct_update_without_approvers(self, client, project):
        response = _change_status(client, project.id, "Kick Off")

        assert response.status_code == 200
        data = response.json()
        assert data["requires_approval"] is False
        assert data["request"] is None
        assert data["project"]["status"] == "Kick Off"
        assert client.get(f"{API}/projects/{project.id}/status-request").json() is None

    def test_request_then_approve(self, client, project):
        _configure_project_approvers(client, project.id, ["alice", "bob"], mode="PARALLEL")

        response = _change_status(client, project.id, "Demand Prioritized")
        assert response.status_code == 200
        data = response.json()
        assert data["requires_approval"] is True
        assert data["project"]["status"] == "Initiative Submitted"
        request_id = data["request"]["id"]

        pending = client.get(f"{API}/projects/{project.id}/status-request").json()
        assert pending["id"] == request_id
        assert pending["to_status"] == "Demand Prioritized"

        queue = client.get(f"{API}/approvals/status-changes", params={"user_id": "bob"}).json()
        assert [(q["request_id"], q["project_code"]) for q in queue] == [
            (request_id, project.code)
        ]

        for user_id in ("bob", "alice"):
            response = client.post(
                f"{API}/approvals/status-changes/{request_id}/approve",
                json={"user_id": user_id},
            )
            assert response.status_code == 200

        assert response.json()["state"] == "APPROVED"
        assert client.get(f"{API}/projects/{project.id}").json()["status"] == "Demand Prioritized"
        status = client.get(f"{API}/projects/{project.id}/approval-status").json()
        assert (status["state"], status["approved"]) == ("APPROVED", 2)

    def test_reject(self, client, project):
        _configure_project_approvers(client, project.id, ["alice", "bob"])
        request_id = _change_status(client, project.id, "Kick Off").json()["request"]["id"]

        response = client.post(
            f"{API}/approvals/status-changes/{request_id}/reject",
            json={"user_id": "alice", "comment": "Budget missing"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "REJECTED"
        assert [a["status"] for a in data["approvers"]] == ["DECLINED", "SKIPPED"]
        assert client.get(f"{API}/projects/{project.id}").json()["status"] == (
            "Initiative Submitted"
        )

    def test_errors(self, client, project):
        _configure_project_approvers(client, project.id, ["alice", "bob"])
        request_id = _change_status(client, project.id, "Kick Off").json()["request"]["id"]

        assert_error(_change_status(client, project.id, "ARF"), 409, "conflict")
        response = client.post(
            f"{API}/approvals/status-changes/{request_id}/approve", json={"user_id": "bob"}
        )
        assert_error(response, 409, "not_your_turn")
        response = client.post(
            f"{API}/approvals/status-changes/{request_id}/approve", json={"user_id": "carol"}
        )
        assert_error(response, 403, "not_an_approver")
        response = client.post(
            f"{API}/approvals/status-changes/999/approve", json={"user_id": "alice"}
        )
        assert_error(response, 404, "not_found")

    def test_unknown_step_is_a_validation_error(self, client, project):
        assert _change_status(client, project.id, "Launched").status_code == 422

    def test_approval_status_before_any_request(self, client, project):
        response = client.get(f"{API}/projects/{project.id}/approval-status")
        assert response.status_code == 200
        assert response.json() is None


class TestDashboard:
    def test_counts(self, client, document):
        configure_approvers(client, document.id, ["alice"])
        other = client.post(
            f"{API}/projects", json={"title": "Go-live project", "owner_id": "alice"}
        ).json()
        _change_status(client, other["id"], "Go Live", requested_by_id="alice")

        stats = client.get(f"{API}/dashboard/stats", params={"user_id": "alice"}).json()
        assert stats == {
            "my_requests": 1,
            "pending_approvals": 1,
            "pending_status_changes": 0,
            "active_projects": 1,
            "completed": 1,
        }

        approve(client, document.id, "alice")
        stats = client.get(f"{API}/dashboard/stats", params={"user_id": "alice"}).json()
        assert stats["pending_approvals"] == 0

    def test_archived_projects_are_not_active(self, client, project):
        response = client.put(
            f"{API}/projects/{project.id}/archive", params={"user_id": "owner"}
        )
        assert response.status_code == 200

        stats = client.get(f"{API}/dashboard/stats").json()
        assert (stats["active_projects"], stats["completed"]) == (0, 0)
        assert stats["my_requests"] == 0

    def test_pending_status_changes(self, client, project):
        _configure_project_approvers(client, project.id, ["bob"])
        _change_status(client, project.id, "Kick Off")

        stats = client.get(f"{API}/dashboard/stats", params={"user_id": "bob"}).json()
        assert stats["pending_status_changes"] == 1
