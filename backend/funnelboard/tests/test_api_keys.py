"""Tests for API key issuing, lookup and revocation."""

import pytest

from funnelboard.models import ApiKey
from funnelboard.security import hash_api_key
from funnelboard.services.api_key_service import ApiKeyService
from funnelboard.services.errors import NotFoundError


def test_issue_key_stores_only_hash(test_db_session, user):
    record, raw_key = ApiKeyService(test_db_session).issue_key(user.id, " Zapier ")

    assert raw_key.startswith("fb_")
    assert record.name == "Zapier"
    assert record.key_prefix == raw_key[:10]
    assert record.key_hash == hash_api_key(raw_key)
    assert raw_key not in {record.key_hash, record.key_prefix}


def test_hash_is_sha256_hex():
    assert hash_api_key("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_revoke_is_idempotent(test_db_session, user, other_user):
    service = ApiKeyService(test_db_session)
    record, _ = service.issue_key(user.id, "Make")

    with pytest.raises(NotFoundError):
        service.revoke_key(record.id, other_user.id)

    first = service.revoke_key(record.id, user.id).revoked_at
    second = service.revoke_key(record.id, user.id).revoked_at
    assert first is not None
    assert first == second


def test_list_keys_scoped_to_user(test_db_session, user, other_user):
    service = ApiKeyService(test_db_session)
    service.issue_key(user.id, "A")
    service.issue_key(other_user.id, "B")

    assert [k.name for k in service.list_keys(user.id)] == ["A"]
    assert test_db_session.query(ApiKey).count() == 2
