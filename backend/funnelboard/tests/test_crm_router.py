"""HTTP tests for the JWT-protected /crm endpoints."""

from uuid import uuid4

from funnelboard.security import create_access_token


def _create_lead(client, headers, pipeline, **body):
    body.setdefault("name", "Ana")
    response = client.post("/crm/leads", json={"pipeline_id": str(pipeline.id), **body}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_requires_authentication(client):
    assert client.get("/crm/pipelines").status_code == 401
    assert client.get("/crm/pipelines", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_token_for_unknown_user_is_rejected(client):
    headers = {"Authorization": f"Bearer {create_access_token('ghost@example.com')}"}
    assert client.get("/crm/pipelines", headers=headers).status_code == 401


def test_cookie_token_is_accepted(client, user):
    client.cookies.set("access_token", create_access_token(user.email))
    assert client.get("/crm/pipelines").status_code == 200


def test_pipeline_lifecycle(client, auth_headers):
    created = client.post(
        "/crm/pipelines",
        json={"name": "Inbound", "stages": [{"name": "New"}, {"name": "Won", "color": "#16A34A"}]},
        headers=auth_headers,
    )
    assert created.status_code == 201
    pipeline = created.json()
    assert [(s["name"], s["order_index"], s["lead_count"]) for s in pipeline["stages"]] == [("New", 0, 0), ("Won", 1, 0)]

    stage = client.post(f"/crm/pipelines/{pipeline['id']}/stages", json={"name": "Lost"}, headers=auth_headers)
    assert stage.status_code == 201
    assert stage.json()["order_index"] == 2

    ids = [s["id"] for s in pipeline["stages"]] + [stage.json()["id"]]
    reordered = client.put(
        f"/crm/pipelines/{pipeline['id']}/stages/order", json={"stage_ids": list(reversed(ids))}, headers=auth_headers
    )
    assert [s["name"] for s in reordered.json()["stages"]] == ["Lost", "Won", "New"]

    bad = client.put(f"/crm/pipelines/{pipeline['id']}/stages/order", json={"stage_ids": ids[:1]}, headers=auth_headers)
    assert bad.status_code == 400

    renamed = client.patch(f"/crm/pipelines/{pipeline['id']}", json={"name": "Outbound"}, headers=auth_headers)
    assert renamed.json()["name"] == "Outbound"

    assert client.delete(f"/crm/stages/{ids[0]}", headers=auth_headers).status_code == 200
    remaining = client.get(f"/crm/pipelines/{pipeline['id']}", headers=auth_headers).json()
    assert [(s["name"], s["order_index"]) for s in remaining["stages"]] == [("Lost", 0), ("Won", 1)]

    assert client.delete(f"/crm/pipelines/{pipeline['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/crm/pipelines/{pipeline['id']}", headers=auth_headers).status_code == 404


def test_other_users_pipeline_is_not_found(client, make_pipeline, other_user, auth_headers):
    theirs = make_pipeline(other_user, name="Theirs")
    assert client.get(f"/crm/pipelines/{theirs.id}", headers=auth_headers).status_code == 404


def test_lead_create_move_and_history(client, auth_headers, pipeline):
    new, qualified, won = pipeline.stages
    lead = _create_lead(client, auth_headers, pipeline, email="ana@example.com", deal_value=300)
    assert lead["current_stage_id"] == str(new.id)

    moved = client.post(f"/crm/leads/{lead['id']}/move", json={"stage_id": str(qualified.id)}, headers=auth_headers)
    assert moved.status_code == 200
    assert moved.json()["current_stage_id"] == str(qualified.id)

    history = client.get(f"/crm/leads/{lead['id']}/history", headers=auth_headers).json()
    assert [(h["from_stage_name"], h["to_stage_name"], h["moved_by"]) for h in history] == [
        ("New", "Qualified", "user"),
        (None, "New", "user"),
    ]

    deleted = client.delete(f"/crm/leads/{lead['id']}/history/{history[0]['id']}", headers=auth_headers)
    assert deleted.status_code == 200
    assert len(client.get(f"/crm/leads/{lead['id']}/history", headers=auth_headers).json()) == 1


def test_move_to_foreign_stage_is_404(client, auth_headers, make_pipeline, pipeline, user):
    other = make_pipeline(user, name="Other")
    lead = _create_lead(client, auth_headers, pipeline)

    response = client.post(f"/crm/leads/{lead['id']}/move", json={"stage_id": str(other.stages[0].id)}, headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "Stage not found in this pipeline"


def test_lead_validation_errors(client, auth_headers, pipeline):
    assert client.post("/crm/leads", json={"pipeline_id": str(pipeline.id), "name": "  "}, headers=auth_headers).status_code == 422
    assert client.post("/crm/leads", json={"pipeline_id": str(uuid4()), "name": "Ana"}, headers=auth_headers).status_code == 404
    lead = _create_lead(client, auth_headers, pipeline)
    assert client.patch(f"/crm/leads/{lead['id']}", json={}, headers=auth_headers).status_code == 400


def test_list_update_and_delete_leads(client, auth_headers, pipeline):
    ana = _create_lead(client, auth_headers, pipeline, name="Ana")
    _create_lead(client, auth_headers, pipeline, name="Bia", stage_id=str(pipeline.stages[2].id))

    listed = client.get("/crm/leads", params={"pipeline_id": str(pipeline.id)}, headers=auth_headers).json()
    assert {lead["name"] for lead in listed} == {"Ana", "Bia"}
    in_won = client.get("/crm/leads", params={"stage_id": str(pipeline.stages[2].id)}, headers=auth_headers).json()
    assert [lead["name"] for lead in in_won] == ["Bia"]

    patched = client.patch(f"/crm/leads/{ana['id']}", json={"company": "Acme"}, headers=auth_headers)
    assert patched.json()["company"] == "Acme"

    counts = client.get(f"/crm/pipelines/{pipeline.id}/stage-counts", headers=auth_headers).json()
    assert [c["lead_count"] for c in counts] == [1, 0, 1]

    assert client.delete(f"/crm/leads/{ana['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/crm/leads/{ana['id']}", headers=auth_headers).status_code == 404


def test_bulk_move_and_recovery(client, auth_headers, pipeline):
    new, qualified, won = pipeline.stages
    leads = [_create_lead(client, auth_headers, pipeline, name=name, stage_id=str(qualified.id)) for name in ("A", "B")]

    recovery = client.get(
        f"/crm/pipelines/{pipeline.id}/recovery",
        params={"passed_stage_id": str(qualified.id), "exclude_stage_ids": [str(won.id)]},
        headers=auth_headers,
    )
    assert {lead["name"] for lead in recovery.json()} == {"A", "B"}

    moved = client.post(
        "/crm/leads/bulk-move",
        json={"lead_ids": [lead["id"] for lead in leads], "stage_id": str(won.id)},
        headers=auth_headers,
    )
    assert moved.json() == {"moved": 2}

    recovery = client.get(
        f"/crm/pipelines/{pipeline.id}/recovery",
        params={"passed_stage_id": str(qualified.id), "exclude_stage_ids": [str(won.id)]},
        headers=auth_headers,
    )
    assert recovery.json() == []


def test_import_endpoint(client, auth_headers, pipeline):
    response = client.post(
        f"/crm/pipelines/{pipeline.id}/import",
        json={"csv_text": "name,email\nAna,ana@example.com\n,ghost@example.com\n"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"imported": 1, "skipped": 1}


def test_tags_endpoints(client, auth_headers, pipeline):
    lead = _create_lead(client, auth_headers, pipeline)
    tag = client.post("/crm/tags", json={"name": "VIP"}, headers=auth_headers).json()

    first = client.post(f"/crm/leads/{lead['id']}/tags/{tag['id']}", headers=auth_headers)
    second = client.post(f"/crm/leads/{lead['id']}/tags/{tag['id']}", headers=auth_headers)
    assert (first.status_code, second.status_code) == (200, 200)

    tags = client.get(f"/crm/leads/{lead['id']}/tags", headers=auth_headers).json()
    assert [t["name"] for t in tags] == ["VIP"]
    assert [t["name"] for t in client.get(f"/crm/leads/{lead['id']}", headers=auth_headers).json()["tags"]] == ["VIP"]

    bulk = client.post(f"/crm/tags/{tag['id']}/leads", json={"lead_ids": [lead["id"]]}, headers=auth_headers)
    assert bulk.json() == {"added": 0}

    assert client.delete(f"/crm/leads/{lead['id']}/tags/{tag['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/crm/leads/{lead['id']}/tags", headers=auth_headers).json() == []

    renamed = client.patch(f"/crm/tags/{tag['id']}", json={"name": "Gold"}, headers=auth_headers)
    assert renamed.json()["name"] == "Gold"
    assert client.delete(f"/crm/tags/{tag['id']}", headers=auth_headers).status_code == 200
    assert client.get("/crm/tags", headers=auth_headers).json() == []


def test_interactions_endpoints(client, auth_headers, pipeline, user):
    lead = _create_lead(client, auth_headers, pipeline)

    created = client.post(
        f"/crm/leads/{lead['id']}/interactions", json={"type": "call", "title": "Intro"}, headers=auth_headers
    )
    assert created.status_code == 201
    assert created.json()["created_by"] == user.email

    assert client.post(
        f"/crm/leads/{lead['id']}/interactions", json={"type": "fax"}, headers=auth_headers
    ).status_code == 422
    assert len(client.get(f"/crm/leads/{lead['id']}/interactions", headers=auth_headers).json()) == 1


def test_analytics_endpoints(client, auth_headers, pipeline):
    _create_lead(client, auth_headers, pipeline, name="A", origin="paid", deal_value=100, created_at="2025-02-10T12:00:00")
    _create_lead(client, auth_headers, pipeline, name="B", origin="organic", created_at="2025-03-10T12:00:00")

    funnel = client.get(
        f"/crm/pipelines/{pipeline.id}/funnel",
        params={"start_date": "2025-02-01", "end_date": "2025-02-28"},
        headers=auth_headers,
    ).json()
    assert funnel["total_leads"] == 1
    assert funnel["stages"][0]["by_origin"] == {"paid": 1}

    counts = client.get(
        "/crm/stage-origin-counts", params={"stage_ids": [str(pipeline.stages[0].id)]}, headers=auth_headers
    ).json()
    assert counts == [{"stage_id": str(pipeline.stages[0].id), "total": 2, "paid": 1, "organic": 1}]

    sales = client.get("/crm/sales", headers=auth_headers).json()
    assert sales == {"total_value": 100.0, "deal_count": 1}


def test_custom_field_endpoints(client, auth_headers, pipeline):
    created = client.post(
        "/crm/custom-fields", json={"name": "Plano", "field_type": "select", "options": ["basic", "pro"]}, headers=auth_headers
    )
    assert created.status_code == 201
    assert created.json()["field_key"] == "plano"

    bad = client.post(
        "/crm/leads", json={"pipeline_id": str(pipeline.id), "name": "Ana", "custom_fields": {"plano": "gold"}},
        headers=auth_headers,
    )
    assert bad.status_code == 400

    lead = _create_lead(client, auth_headers, pipeline, custom_fields={"plano": "pro"})
    assert lead["custom_fields"] == {"plano": "pro"}

    field_id = created.json()["id"]
    assert client.patch(f"/crm/custom-fields/{field_id}", json={"required": True}, headers=auth_headers).json()["required"] is True
    assert client.delete(f"/crm/custom-fields/{field_id}", headers=auth_headers).status_code == 200
    assert client.get("/crm/custom-fields", headers=auth_headers).json() == []


def test_api_key_endpoints(client, auth_headers, pipeline):
    issued = client.post("/crm/api-keys", json={"name": "Zapier"}, headers=auth_headers)
    assert issued.status_code == 201
    raw_key = issued.json()["key"]

    listed = client.get("/crm/api-keys", headers=auth_headers).json()
    assert "key" not in listed[0]
    assert listed[0]["key_prefix"] == raw_key[:10]

    webhook = client.post(
        "/api/crm/leads/webhook", json={"pipeline_id": str(pipeline.id), "name": "Ana"}, headers={"X-API-Key": raw_key}
    )
    assert webhook.status_code == 201

    revoked = client.delete(f"/crm/api-keys/{issued.json()['id']}", headers=auth_headers)
    assert revoked.json()["revoked_at"] is not None
    webhook = client.post(
        "/api/crm/leads/webhook", json={"pipeline_id": str(pipeline.id), "name": "Bia"}, headers={"X-API-Key": raw_key}
    )
    assert webhook.status_code == 401


def test_prune_history_endpoint(client, auth_headers, pipeline):
    lead = _create_lead(client, auth_headers, pipeline)
    client.delete(f"/crm/leads/{lead['id']}", headers=auth_headers)

    response = client.post("/crm/history/prune", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["detail"].startswith("1 ")


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_null_names_are_rejected_and_null_color_is_ignored(client, auth_headers, pipeline):
    stage = pipeline.stages[0]
    color = stage.color

    assert client.patch(f"/crm/pipelines/{pipeline.id}", json={"name": None}, headers=auth_headers).status_code == 400
    assert client.patch(f"/crm/stages/{stage.id}", json={"name": None}, headers=auth_headers).status_code == 400

    response = client.patch(f"/crm/stages/{stage.id}", json={"color": None, "name": "Fresh"}, headers=auth_headers)
    assert response.status_code == 200
    assert (response.json()["name"], response.json()["color"]) == ("Fresh", color)
    assert client.get(f"/crm/pipelines/{pipeline.id}", headers=auth_headers).json()["name"] == "Inbound"


def test_custom_field_null_updates(client, auth_headers):
    field = client.post("/crm/custom-fields", json={"name": "Plano", "required": True}, headers=auth_headers).json()

    assert client.patch(f"/crm/custom-fields/{field['id']}", json={"name": None}, headers=auth_headers).status_code == 400

    response = client.patch(f"/crm/custom-fields/{field['id']}", json={"required": None}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["required"] is True
