from __future__ import annotations

import pytest

from storebridge.auth import ApiKeyManager, CredentialRecord, DuplicateKeyError, InMemoryCredentialStore, Plan, hash_key


@pytest.fixture()
def manager(credential_store, clock) -> ApiKeyManager:
    return ApiKeyManager(credential_store, clock=clock)


@pytest.mark.asyncio
async def test_generate_key_stores_only_the_hash(manager, credential_store):
    generated = await manager.generate_key("pro", email="dev@example.com")

    assert generated.api_key.startswith("sk-storebridge-pro-")
    assert len(generated.api_key.rsplit("-", 1)[1]) == 32
    assert generated.key_id.startswith("key_")
    record = await credential_store.get(generated.key_id)
    assert record.key_hash == hash_key(generated.api_key)
    assert generated.api_key not in record.to_public_dict().values()
    assert record.plan is Plan.PRO
    assert record.email == "dev@example.com"


@pytest.mark.asyncio
async def test_validate_is_idempotent_and_touches_last_used(manager, credential_store, clock):
    generated = await manager.generate_key(Plan.FREE)

    first = await manager.validate_key(generated.api_key)
    second = await manager.validate_key(generated.api_key)

    assert first.valid and second.valid
    assert first.key_id == second.key_id == generated.key_id
    assert first.plan is Plan.FREE
    record = await credential_store.get(generated.key_id)
    assert record.last_used_at == clock.now


@pytest.mark.asyncio
async def test_unknown_and_revoked_keys_are_indistinguishable(manager):
    generated = await manager.generate_key(Plan.TEAM)
    assert await manager.revoke_key(generated.key_id) is True

    revoked = await manager.validate_key(generated.api_key)
    unknown = await manager.validate_key("sk-storebridge-team-" + "0" * 32)
    empty = await manager.validate_key("")

    assert revoked == unknown == empty
    assert revoked.valid is False
    assert revoked.key_id is None


@pytest.mark.asyncio
async def test_revoke_is_soft_and_single_shot(manager):
    generated = await manager.generate_key(Plan.FREE)

    assert await manager.revoke_key(generated.key_id) is True
    assert await manager.revoke_key(generated.key_id) is False
    assert await manager.revoke_key("key_missing") is False
    info = await manager.get_key_info(generated.key_id)
    assert info is not None
    assert info.is_active is False


@pytest.mark.asyncio
async def test_provision_registers_out_of_band_key(manager):
    secret = "sk-storebridge-enterprise-" + "ab" * 16

    record = await manager.provision(key_id="key_ops", key_hash=hash_key(secret).upper(), plan="enterprise")

    assert record.key_hash == hash_key(secret)
    validation = await manager.validate_key(secret)
    assert validation.key_id == "key_ops"
    assert validation.plan is Plan.ENTERPRISE


@pytest.mark.asyncio
async def test_secret_hash_is_unique(clock):
    record = CredentialRecord(key_id="key_a", key_hash="h", plan=Plan.FREE, quota_resets_at=clock.now)
    store = InMemoryCredentialStore([record])

    with pytest.raises(DuplicateKeyError):
        await store.insert(CredentialRecord(key_id="key_b", key_hash="h", plan=Plan.PRO, quota_resets_at=clock.now))


@pytest.mark.asyncio
async def test_store_reads_return_copies(credential_store, clock):
    await credential_store.insert(CredentialRecord(key_id="key_a", key_hash="h", plan=Plan.FREE, quota_resets_at=clock.now))

    copy = await credential_store.get("key_a")
    copy.call_count = 99

    assert (await credential_store.get("key_a")).call_count == 0
