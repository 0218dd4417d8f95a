"""HTTP tests for the API-key authenticated lead API."""

from uuid import uuid4

from funnelboard.models import ApiKey, Lead, LeadStageHistory


def _webhook(client, headers, **body):
    return client.post("/api/crm/leads/webhook", json=body, headers=headers)


def test_webhook_requires_api_key(client, pipeline):
    response = _webhook(client, {}, pipeline_id=str(pipeline.id), name="Ana")
    assert response.status_code == 401


def test_webhook_rejects_unknown_key(client, pipeline):
    response = _webhook(client, {"X-API-Key": "fb_not-a-real-key"}, pipeline_id=str(pipeline.id), name="Ana")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"


def test_webhook_rejects_revoked_key(client, test_db_session, api_headers, pipeline):
    for key in test_db_session.query(ApiKey).all():
        key.revoked_at = key.created_at
    test_db_session.commit()

    assert _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="Ana").status_code == 401


def test_webhook_creates_then_dedups_by_email(client, test_db_session, api_headers, pipeline):
    first = _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="Ana", email="ana@example.com")
    second = _webhook(
        client, api_headers, pipeline_id=str(pipeline.id), name="Ana Souza", email="ana@example.com", phone="555"
    )

    assert first.status_code == 201
    assert first.json()["status"] == "created"
    assert second.status_code == 200
    assert second.json() == {"lead_id": first.json()["lead_id"], "status": "updated"}

    leads = test_db_session.query(Lead).all()
    assert len(leads) == 1
    assert leads[0].name == "Ana Souza"
    assert leads[0].origin == "webhook"
    assert leads[0].current_stage_id == pipeline.stages[0].id
    assert test_db_session.query(LeadStageHistory).count() == 1


def test_webhook_updates_last_used_at(client, test_db_session, api_headers, pipeline):
    _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="Ana")
    test_db_session.expire_all()
    assert test_db_session.query(ApiKey).one().last_used_at is not None


def test_webhook_missing_fields(client, api_headers, pipeline):
    response = _webhook(client, api_headers, email="ana@example.com")
    assert response.status_code == 400
    assert "pipeline_id" in response.json()["detail"]
    assert "name" in response.json()["detail"]

    assert _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="   ").status_code == 400


def test_webhook_bad_ids(client, api_headers, pipeline, make_pipeline, other_user):
    assert _webhook(client, api_headers, pipeline_id="not-a-uuid", name="Ana").status_code == 400
    assert _webhook(client, api_headers, pipeline_id=str(uuid4()), name="Ana").status_code == 404

    foreign = make_pipeline(other_user, name="Theirs")
    assert _webhook(client, api_headers, pipeline_id=str(foreign.id), name="Ana").status_code == 404

    response = _webhook(
        client, api_headers, pipeline_id=str(pipeline.id), stage_id=str(foreign.stages[0].id), name="Ana"
    )
    assert response.status_code == 404


def test_webhook_usage_is_public(client):
    response = client.get("/api/crm/leads/webhook")
    assert response.status_code == 200
    assert response.json()["required_fields"] == ["pipeline_id", "name"]


def test_list_pipelines(client, api_headers, pipeline):
    response = client.get("/api/crm/pipelines", headers=api_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    stages = body["pipelines"][0]["stages"]
    assert [s["name"] for s in stages] == ["New", "Qualified", "Won"]
    assert set(stages[0]) == {"id", "name", "color"}


def test_move_lead(client, test_db_session, api_headers, pipeline):
    new, qualified, won = pipeline.stages
    lead_id = _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="Ana").json()["lead_id"]

    response = client.post(f"/api/crm/leads/{lead_id}/move", json={"stage_id": str(won.id)}, headers=api_headers)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "lead_id": lead_id,
        "from_stage_id": str(new.id),
        "to_stage_id": str(won.id),
        "stage_name": "Won",
        "message": "Lead moved to Won",
    }
    last = (
        test_db_session.query(LeadStageHistory)
        .order_by(LeadStageHistory.moved_at.desc())
        .first()
    )
    assert (last.to_stage_id, last.moved_by) == (won.id, "api")


def test_move_lead_errors(client, api_headers, pipeline, make_pipeline, user):
    other = make_pipeline(user, name="Other")
    lead_id = _webhook(client, api_headers, pipeline_id=str(pipeline.id), name="Ana").json()["lead_id"]

    assert client.post(f"/api/crm/leads/{lead_id}/move", json={}, headers=api_headers).status_code == 400
    mismatched = client.post(
        f"/api/crm/leads/{lead_id}/move", json={"stage_id": str(other.stages[0].id)}, headers=api_headers
    )
    assert mismatched.status_code == 404
    missing = client.post(
        f"/api/crm/leads/{uuid4()}/move", json={"stage_id": str(pipeline.stages[0].id)}, headers=api_headers
    )
    assert missing.status_code == 404


def test_get_update_and_check_lead(client, api_headers, pipeline):
    lead_id = _webhook(
        client, api_headers, pipeline_id=str(pipeline.id), name="Ana", email="ana@example.com",
        custom_fields={"city": "Recife"},
    ).json()["lead_id"]

    fetched = client.get(f"/api/crm/leads/{lead_id}", headers=api_headers)
    assert fetched.status_code == 200
    assert fetched.json()["lead"]["email"] == "ana@example.com"

    updated = client.patch(
        f"/api/crm/leads/{lead_id}", json={"company": "Acme", "custom_fields": {"plan": "pro"}}, headers=api_headers
    )
    assert updated.status_code == 200
    assert updated.json()["lead"]["company"] == "Acme"
    assert updated.json()["lead"]["custom_fields"] == {"city": "Recife", "plan": "pro"}

    check = client.get("/api/crm/leads/check", params={"email": "ana@example.com"}, headers=api_headers)
    assert check.json()["exists"] is True
    assert check.json()["total_matches"] == 1
    assert check.json()["lead"]["id"] == lead_id

    miss = client.get(
        "/api/crm/leads/check",
        params={"email": "ana@example.com", "pipeline_id": str(uuid4())},
        headers=api_headers,
    )
    assert miss.json() == {"exists": False, "lead": None, "total_matches": 0}


def test_lead_lookup_errors(client, api_headers):
    assert client.get("/api/crm/leads/not-a-uuid", headers=api_headers).status_code == 400
    assert client.get(f"/api/crm/leads/{uuid4()}", headers=api_headers).status_code == 404
    assert client.get("/api/crm/leads/check", headers=api_headers).status_code == 400
