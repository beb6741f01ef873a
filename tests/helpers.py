from __future__ import annotations

from typing import Any

API = "/api"


def assert_error(
    response, status_code: int, code: str, message_contains: str | None = None
) -> None:
    assert response.status_code == status_code
    payload = response.json()
    assert "error" in payload
    assert payload["error"]["code"] == code
    if message_contains is not None:
        assert message_contains in payload["error"]["message"]


def configure_approvers(
    client,
    document_id: int,
    approvers: list[str],
    mode: str = "SEQUENTIAL",
    steps: list[dict[str, Any]] | None = None,
    requested_by_id: str | None = "owner",
):
    payload: dict[str, Any] = {"approvers": approvers, "approval_mode": mode}
    if steps is not None:
        payload["approval_steps"] = steps
    if requested_by_id is not None:
        payload["requested_by_id"] = requested_by_id
    return client.post(f"{API}/documents/{document_id}/approvers", json=payload)


def approve(client, document_id: int, user_id: str, comment: str | None = None):
    payload: dict[str, Any] = {"user_id": user_id}
    if comment is not None:
        payload["comment"] = comment
    return client.post(f"{API}/documents/{document_id}/approve", json=payload)


def decline(client, document_id: int, user_id: str, comment: str | None = None):
    payload: dict[str, Any] = {"user_id": user_id}
    if comment is not None:
        payload["comment"] = comment
    return client.post(f"{API}/documents/{document_id}/decline", json=payload)


def approval_status(client, document_id: int):
    return client.get(f"{API}/documents/{document_id}/approval-status")
