from __future__ import annotations

import uuid

import pytest

from tests.utils import make_headers


async def _create(client, form_id, headers, /, **overrides):
    body = {"name": "CRM", "url": "https://crm.example.com/hook"}
    body.update(overrides)
    return await client.post(f"/api/v1/forms/{form_id}/webhooks", json=body, headers=headers)


@pytest.mark.asyncio
async def test_create_webhook_as_client_is_pending(service_client):
    user_id = uuid.uuid4()
    form_id = uuid.uuid4()

    resp = await _create(
        service_client,
        form_id,
        make_headers(user_id),
        event_types=["SUBMISSION_CREATED", "SUBMISSION_CREATED", "FORM_PUBLISHED"],
        headers='{"X-Tenant": "acme"}',
    )

    assert resp.status == 201
    body = await resp.json()
    assert body["approval_state"] == "pending"
    assert body["admin_approved"] is None
    assert body["created_by"] == str(user_id)
    assert body["form_id"] == str(form_id)
    assert body["event_types"] == ["SUBMISSION_CREATED", "FORM_PUBLISHED"]
    assert body["headers"] == {"X-Tenant": "acme"}


@pytest.mark.asyncio
async def test_create_webhook_as_admin_is_approved(service_client):
    resp = await _create(service_client, uuid.uuid4(), make_headers(role="admin"))
    assert resp.status == 201
    assert (await resp.json())["approval_state"] == "approved"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"url": "ftp://example.com"},
        {"event_types": []},
        {"event_types": ["NOT_AN_EVENT"]},
        {"auth_type": "BEARER"},
        {"retry_interval": 0},
        {"headers": "not json"},
        {"unknown_field": 1},
    ],
)
async def test_create_webhook_validation(service_client, overrides):
    resp = await _create(service_client, uuid.uuid4(), make_headers(), **overrides)
    assert resp.status == 400


@pytest.mark.asyncio
async def test_requests_require_identity(service_client):
    resp = await service_client.get(f"/api/v1/forms/{uuid.uuid4()}/webhooks")
    assert resp.status == 401

    resp = await service_client.get(
        f"/api/v1/forms/{uuid.uuid4()}/webhooks", headers={"X-User-Id": "nope"}
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_list_webhooks_is_scoped_to_owner(service_client, subscribers):
    form_id = uuid.uuid4()
    owner = uuid.uuid4()
    subscribers.add(form_id=form_id, created_by=owner)
    subscribers.add(form_id=form_id, created_by=owner)
    subscribers.add(form_id=form_id)

    resp = await service_client.get(
        f"/api/v1/forms/{form_id}/webhooks?limit=1", headers=make_headers(owner)
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["total"] == 2
    assert len(body["webhooks"]) == 1
    assert body["has_next_page"] is True

    resp = await service_client.get(
        f"/api/v1/forms/{form_id}/webhooks", headers=make_headers(role="admin")
    )
    assert (await resp.json())["total"] == 3


@pytest.mark.asyncio
async def test_get_webhook_access(service_client, subscribers):
    sub = subscribers.add()

    resp = await service_client.get(
        f"/api/v1/webhooks/{sub.id}", headers=make_headers(sub.created_by)
    )
    assert resp.status == 200
    assert (await resp.json())["id"] == str(sub.id)

    resp = await service_client.get(f"/api/v1/webhooks/{sub.id}", headers=make_headers())
    assert resp.status == 403

    resp = await service_client.get(f"/api/v1/webhooks/{uuid.uuid4()}", headers=make_headers())
    assert resp.status == 404

    resp = await service_client.get("/api/v1/webhooks/not-a-uuid", headers=make_headers())
    assert resp.status == 400


@pytest.mark.asyncio
async def test_patch_webhook_strips_admin_fields_for_owner(service_client, subscribers):
    sub = subscribers.add(admin_approved=None)

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}",
        json={"name": "Renamed", "admin_approved": True},
        headers=make_headers(sub.created_by),
    )

    assert resp.status == 200
    body = await resp.json()
    assert body["name"] == "Renamed"
    assert body["approval_state"] == "pending"


@pytest.mark.asyncio
async def test_patch_locked_webhook_is_forbidden_for_owner(service_client, subscribers):
    sub = subscribers.add(admin_locked=True)

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}", json={"name": "x"}, headers=make_headers(sub.created_by)
    )
    assert resp.status == 403

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}", json={"name": "x"}, headers=make_headers(role="admin")
    )
    assert resp.status == 200


@pytest.mark.asyncio
async def test_admin_deactivation_records_admin(service_client, subscribers):
    sub = subscribers.add()
    admin_id = uuid.uuid4()

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}",
        json={"active": False},
        headers=make_headers(admin_id, role="admin"),
    )
    assert (await resp.json())["deactivated_by"] == str(admin_id)

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}", json={"active": True}, headers=make_headers(sub.created_by)
    )
    assert resp.status == 403


@pytest.mark.asyncio
async def test_patch_auth_type_without_value(service_client, subscribers):
    sub = subscribers.add()
    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}",
        json={"auth_type": "BASIC"},
        headers=make_headers(sub.created_by),
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_patch_rejects_null_for_required_fields(service_client, subscribers):
    sub = subscribers.add()

    resp = await service_client.patch(
        f"/api/v1/webhooks/{sub.id}",
        json={"event_types": None, "retry_count": None, "active": None},
        headers=make_headers(role="admin"),
    )

    assert resp.status == 400
    assert subscribers.items[sub.id] == sub


@pytest.mark.asyncio
async def test_delete_webhook(service_client, subscribers):
    sub = subscribers.add()

    resp = await service_client.delete(
        f"/api/v1/webhooks/{sub.id}", headers=make_headers(sub.created_by)
    )
    assert resp.status == 204
    assert sub.id not in subscribers.items


@pytest.mark.asyncio
async def test_test_webhook_endpoint(service_client, subscribers, receiver):
    sub = subscribers.add(url=receiver.url)

    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test", headers=make_headers(sub.created_by)
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["success"] is True
    assert body["response"]["status"] == 200
    assert receiver.last_json()["test"] is True

    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test",
        json={"payload": {"custom": 1}},
        headers=make_headers(sub.created_by),
    )
    assert (await resp.json())["success"] is True
    sent = receiver.last_json()
    assert sent["submission"]["data"] == {"custom": 1}
    assert sent["test"] is True


@pytest.mark.asyncio
async def test_test_webhook_accepts_event_type(service_client, subscribers, deliveries, receiver):
    sub = subscribers.add(url=receiver.url)

    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test",
        json={"eventType": "FORM_PUBLISHED"},
        headers=make_headers(sub.created_by),
    )

    assert resp.status == 200
    body = await resp.json()
    assert body["requestSent"]["payload"]["event"] == "FORM_PUBLISHED"
    assert body["requestSent"]["payload"]["form"]["published"] is True
    assert receiver.last_json()["event"] == "FORM_PUBLISHED"
    (record,) = deliveries.items.values()
    assert record.event_type == "FORM_PUBLISHED"

    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test",
        json={"event_type": "NOT_AN_EVENT"},
        headers=make_headers(sub.created_by),
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_test_webhook_rejects_invalid_payload(service_client, subscribers):
    sub = subscribers.add()
    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test",
        json={"payload": "{oops"},
        headers=make_headers(sub.created_by),
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_test_webhook_refused_when_pending(service_client, subscribers, receiver):
    sub = subscribers.add(url=receiver.url, admin_approved=None)
    resp = await service_client.post(
        f"/api/v1/webhooks/{sub.id}/test", headers=make_headers(sub.created_by)
    )
    body = await resp.json()
    assert body["success"] is False
    assert body["error"]["message"] == "Webhook is not approved by administrator"
    assert receiver.requests == []
