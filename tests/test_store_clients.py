from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Callable, List

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from storebridge.adapters import StaticCredentialResolver, StoreAPIError
from storebridge.adapters.base import ReviewListParams, RollbackParams, SetRolloutParams, StatusParams, UploadParams
from storebridge.adapters.stores.app_store import AppStoreAdapter
from storebridge.adapters.stores.base import canonical_query, iter_chunks
from storebridge.adapters.stores.google_play import GooglePlayAdapter
from storebridge.adapters.stores.huawei_agc import HuaweiAGCAdapter
from storebridge.adapters.stores.pgyer import PgyerAdapter, PgyerClient
from storebridge.adapters.stores.vivo import VivoClient
from storebridge.adapters.stores.xiaomi import XiaomiClient

CREDENTIALS = StaticCredentialResolver(
    stores={
        "pgyer": {"api_key": "pgyer-secret"},
        "google_play": {"access_token": "gp-token"},
        "app_store": {"token": "asc-jwt"},
        "huawei_agc": {"access_token": "agc-token", "client_id": "agc-client"},
        "vivo": {"access_key": "vivo-key", "access_secret": "vivo-secret"},
    }
)


def _transport(handler: Callable[[httpx.Request], httpx.Response], seen: List[httpx.Request]) -> httpx.MockTransport:
    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(record)


@pytest.fixture()
def apk(tmp_path):
    path = tmp_path / "app-release.apk"
    path.write_bytes(b"PK\x03\x04fake-apk")
    return path


# --------------------------------------------------------------------------- classification


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "code", "retryable"),
    [
        (408, "TIMEOUT", True),
        (429, "RATE_LIMIT_EXCEEDED", True),
        (500, "STORE_API_ERROR", True),
        (503, "STORE_API_ERROR", True),
        (401, "AUTH_EXPIRED", False),
        (403, "AUTH_INSUFFICIENT_PERMISSIONS", False),
        (404, "REQUEST_REJECTED", False),
    ],
)
async def test_http_status_classification(status, code, retryable):
    client = PgyerClient(CREDENTIALS, transport=httpx.MockTransport(lambda request: httpx.Response(status, text="nope")))

    with pytest.raises(StoreAPIError) as excinfo:
        await client.request_json("POST", "/app/view")

    assert excinfo.value.code == code
    assert excinfo.value.retryable is retryable
    assert excinfo.value.status_code == status
    assert excinfo.value.store_id == "pgyer"


@pytest.mark.asyncio
async def test_transport_failures_are_retryable():
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(StoreAPIError) as timed_out:
        await PgyerClient(CREDENTIALS, transport=httpx.MockTransport(timeout)).request("GET", "/ping")
    with pytest.raises(StoreAPIError) as unreachable:
        await PgyerClient(CREDENTIALS, transport=httpx.MockTransport(refused)).request("GET", "/ping")

    assert (timed_out.value.code, timed_out.value.retryable) == ("TIMEOUT", True)
    assert (unreachable.value.code, unreachable.value.retryable) == ("NETWORK_ERROR", True)


@pytest.mark.asyncio
async def test_undecodable_json_is_malformed_response():
    client = PgyerClient(CREDENTIALS, transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))

    with pytest.raises(StoreAPIError) as excinfo:
        await client.request_json("GET", "/ping")

    assert excinfo.value.code == "MALFORMED_RESPONSE"
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_missing_credentials_surface_as_store_not_connected():
    client = PgyerClient(StaticCredentialResolver(), transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    with pytest.raises(StoreAPIError) as excinfo:
        await client.token()

    assert excinfo.value.code == "STORE_NOT_CONNECTED"
    assert excinfo.value.retryable is False


def test_store_error_payload_shape():
    error = StoreAPIError("boom", store_id="vivo", code="SUBMIT_FAILED", status_code=400)

    assert error.to_payload() == {"error": "boom", "code": "SUBMIT_FAILED", "store": "vivo", "retryable": False, "status_code": 400}


# --------------------------------------------------------------------------- pgyer


@pytest.mark.asyncio
async def test_pgyer_upload_maps_build_fields(apk, fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 0, "data": {"buildKey": "bk1", "buildVersion": "1.2.0", "buildShortcutUrl": "abcd"}})

    adapter = PgyerAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.upload_build(UploadParams(app_id="demo", file_path=str(apk), file_type="apk", changelog="fixes"))

    assert result.success is True
    assert result.build_id == "bk1"
    assert result.url == "https://www.pgyer.com/abcd"
    assert "v1.2.0" in result.message
    assert seen[0].url.path == "/apiv2/app/upload"
    assert b"pgyer-secret" in seen[0].content
    assert b"fake-apk" in seen[0].content


@pytest.mark.asyncio
async def test_pgyer_upload_retries_vendor_failures(apk, fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if len(seen) == 1:
            return httpx.Response(200, json={"code": 1216, "message": "busy"})
        return httpx.Response(200, json={"code": 0, "data": {"buildKey": "bk2"}})

    adapter = PgyerAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.upload_build(UploadParams(app_id="demo", file_path=str(apk), file_type="apk"))

    assert result.build_id == "bk2"
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_pgyer_status_errors_are_not_retried(fast_retry):
    seen: List[httpx.Request] = []
    handler = lambda request: httpx.Response(200, json={"code": 1002, "message": "app not found"})  # noqa: E731
    adapter = PgyerAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))

    with pytest.raises(StoreAPIError) as excinfo:
        await adapter.get_status(StatusParams(app_id="missing"))

    assert excinfo.value.code == "STATUS_FAILED"
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_missing_artifact_is_not_retried(tmp_path, fast_retry):
    seen: List[httpx.Request] = []
    adapter = PgyerAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(lambda request: httpx.Response(200), seen))

    with pytest.raises(StoreAPIError) as excinfo:
        await adapter.upload_build(UploadParams(app_id="demo", file_path=str(tmp_path / "gone.apk"), file_type="apk"))

    assert excinfo.value.code == "ARTIFACT_NOT_FOUND"
    assert seen == []


@pytest.mark.asyncio
async def test_iter_chunks_streams_in_bounded_reads(tmp_path):
    path = tmp_path / "big.apk"
    path.write_bytes(b"0123456789")

    with path.open("rb") as handle:
        chunks = [chunk async for chunk in iter_chunks(handle, chunk_size=4)]

    assert chunks == [b"0123", b"4567", b"89"]


# --------------------------------------------------------------------------- google play


@pytest.mark.asyncio
async def test_google_play_upload_runs_one_edit_session(tmp_path, fast_retry):
    bundle = tmp_path / "app.aab"
    bundle.write_bytes(b"aab-bytes")
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/edits") and request.method == "POST":
            return httpx.Response(200, json={"id": "edit-1"})
        if "/bundles" in path:
            return httpx.Response(200, json={"versionCode": 42})
        if path.endswith(":commit"):
            return httpx.Response(200, json={"id": "edit-1"})
        return httpx.Response(404)

    adapter = GooglePlayAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.upload_build(UploadParams(app_id="com.example", file_path=str(bundle), file_type="aab"))

    assert result.success is True
    assert result.build_id == "42"
    assert result.store_ref == "edit-1"
    assert [request.method for request in seen] == ["POST", "POST", "POST"]
    assert seen[1].url.path == "/upload/androidpublisher/v3/applications/com.example/edits/edit-1/bundles"
    assert seen[1].url.params["uploadType"] == "media"
    assert seen[1].headers["Authorization"] == "Bearer gp-token"
    assert seen[1].headers["Content-Length"] == "9"
    assert "Transfer-Encoding" not in seen[1].headers
    assert seen[1].content == b"aab-bytes"
    assert seen[2].url.path.endswith("/edits/edit-1:commit")


@pytest.mark.asyncio
async def test_google_play_discards_edit_on_permanent_failure(apk, fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(204)
        if request.url.path.endswith("/edits"):
            return httpx.Response(200, json={"id": "edit-9"})
        return httpx.Response(401, json={"error": "expired"})

    adapter = GooglePlayAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))

    with pytest.raises(StoreAPIError) as excinfo:
        await adapter.upload_build(UploadParams(app_id="com.example", file_path=str(apk), file_type="apk"))

    assert excinfo.value.code == "AUTH_EXPIRED"
    assert [request.method for request in seen] == ["POST", "POST", "DELETE"]
    assert seen[-1].url.path.endswith("/edits/edit-9")


@pytest.mark.asyncio
async def test_google_play_retries_whole_session_on_transient_error(fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/edits"):
            if len(seen) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"id": "edit-2"})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"track": "production", "releases": [{"name": "1.4.0", "status": "inProgress", "userFraction": 0.2, "versionCodes": ["14"]}]})

    adapter = GooglePlayAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.get_status(StatusParams(app_id="com.example"))

    assert result.live_status == "rolling_out"
    assert result.rollout_percentage == pytest.approx(20.0)
    assert result.version == "1.4.0"
    assert seen[0].url.path.endswith("/edits") and seen[1].url.path.endswith("/edits")


@pytest.mark.asyncio
async def test_google_play_rollback_halts_in_progress_release(fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/edits"):
            return httpx.Response(200, json={"id": "edit-3"})
        if request.method == "GET":
            return httpx.Response(200, json={"releases": [{"status": "inProgress", "userFraction": 0.1, "versionCodes": ["7"]}]})
        return httpx.Response(200, json={})

    adapter = GooglePlayAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.rollback(RollbackParams(app_id="com.example", track="production"))

    assert result.success is True
    update = next(request for request in seen if request.method == "PUT")
    assert json.loads(update.content)["releases"][0]["status"] == "halted"
    assert seen[-1].url.path.endswith(":commit")


@pytest.mark.asyncio
async def test_google_play_rollback_without_rollout_declines(fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/edits"):
            return httpx.Response(200, json={"id": "edit-4"})
        if request.method == "GET":
            return httpx.Response(200, json={"releases": [{"status": "completed", "versionCodes": ["7"]}]})
        return httpx.Response(204)

    adapter = GooglePlayAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.rollback(RollbackParams(app_id="com.example"))

    assert result.success is False
    assert result.unsupported is False
    assert seen[-1].method == "DELETE"


# --------------------------------------------------------------------------- app store


@pytest.mark.asyncio
async def test_app_store_partial_rollout_is_declined_without_calls(fast_retry):
    seen: List[httpx.Request] = []
    adapter = AppStoreAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(lambda request: httpx.Response(500), seen))

    result = await adapter.set_rollout(SetRolloutParams(app_id="123", track="production", percentage=50))

    assert result.success is False
    assert result.unsupported is False
    assert seen == []


@pytest.mark.asyncio
async def test_app_store_reviews_expose_next_cursor(fast_retry):
    seen: List[httpx.Request] = []
    payload = {
        "data": [{"id": "r1", "attributes": {"rating": 5, "title": "Great", "body": "Love it", "reviewerNickname": "ann", "createdDate": "2025-01-02"}}],
        "links": {"next": "https://api.appstoreconnect.apple.com/v1/apps/123/customerReviews?cursor=NEXT&limit=1"},
    }
    adapter = AppStoreAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(lambda request: httpx.Response(200, json=payload), seen))

    result = await adapter.list_reviews(ReviewListParams(app_id="123", limit=1))

    assert result.success is True
    assert result.next_page_token == "NEXT"
    assert result.reviews[0].review_id == "r1"
    assert seen[0].url.params["sort"] == "-createdDate"
    assert seen[0].headers["Authorization"] == "Bearer asc-jwt"


# --------------------------------------------------------------------------- appgallery


@pytest.mark.asyncio
async def test_huawei_upload_three_steps(apk, fast_retry):
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/upload-url"):
            return httpx.Response(200, json={"ret": {"code": 0}, "uploadUrl": "https://upload.example.com/file", "authCode": "auth-1"})
        if request.url.host == "upload.example.com":
            return httpx.Response(200, json={"result": {"UploadFileRsp": {"ifSuccess": 1, "fileInfoList": [{"fileDestUlr": "https://cdn/app.apk"}]}}})
        return httpx.Response(200, json={"ret": {"code": 0, "msg": "success"}})

    adapter = HuaweiAGCAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))
    result = await adapter.upload_build(UploadParams(app_id="10001", file_path=str(apk), file_type="apk"))

    assert result.build_id == "auth-1"
    assert result.store_ref == "huawei-10001"
    assert seen[0].headers["client_id"] == "agc-client"
    attach = json.loads(seen[2].content)
    assert attach["fileType"] == 1
    assert attach["files"][0]["fileDestUrl"] == "https://cdn/app.apk"


@pytest.mark.asyncio
async def test_huawei_envelope_errors_carry_call_code(fast_retry):
    seen: List[httpx.Request] = []
    handler = lambda request: httpx.Response(200, json={"ret": {"code": 204144647, "msg": "app not found"}})  # noqa: E731
    adapter = HuaweiAGCAdapter.create(CREDENTIALS, retry_policy=fast_retry, transport=_transport(handler, seen))

    with pytest.raises(StoreAPIError) as excinfo:
        await adapter.get_status(StatusParams(app_id="10001"))

    assert excinfo.value.code == "STATUS_FAILED"
    assert "app not found" in str(excinfo.value)
    assert len(seen) == 1


# --------------------------------------------------------------------------- signing


def test_canonical_query_sorts_keys():
    assert canonical_query({"b": "2", "a": "1", "c": "x y"}) == "a=1&b=2&c=x y"


def test_xiaomi_signature_verifies_with_public_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()).decode("ascii")
    client = XiaomiClient(StaticCredentialResolver(stores={"xiaomi": {"private_key": pem, "user_name": "dev@example.com"}}))
    params = {"packageName": "com.example", "timestamp": "1700000000000"}

    signature = base64.b64decode(client.sign(params))

    key.public_key().verify(signature, b"packageName=com.example&timestamp=1700000000000", padding.PKCS1v15(), hashes.SHA256())


def test_xiaomi_invalid_key_is_store_not_connected():
    client = XiaomiClient(StaticCredentialResolver(stores={"xiaomi": {"private_key": "not a pem"}}))

    with pytest.raises(StoreAPIError) as excinfo:
        client.sign({"a": "1"})

    assert excinfo.value.code == "STORE_NOT_CONNECTED"


def test_vivo_signature_is_hmac_over_sorted_fields():
    client = VivoClient(CREDENTIALS)

    signed = client._signed("app.query.task.status", {"packageName": "com.example"})

    unsigned = {key: value for key, value in signed.items() if key != "sign"}
    expected = hmac.new(b"vivo-secret", canonical_query(unsigned).encode("utf-8"), hashlib.sha256).hexdigest()
    assert signed["sign"] == expected
    assert signed["access_key"] == "vivo-key"
    assert signed["method"] == "app.query.task.status"
