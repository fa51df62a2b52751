import json

import httpx
import pytest

from shared_provider.mux import MuxClient, ProviderError
from shared_provider.signature import SignatureVerificationError, compute_signature, verify_signature


async def test_create_direct_upload_sends_passthrough_and_subtitles(mux, provider):
    upload = await provider.create_direct_upload('{"recordId":"r1"}', cors_origin="https://app.test", subtitles_language="en")

    assert upload.id == "upload-1"
    assert upload.url == "https://storage.test/upload-1"
    body = mux.bodies("POST")[0]
    assert body["cors_origin"] == "https://app.test"
    settings = body["new_asset_settings"]
    assert settings["passthrough"] == '{"recordId":"r1"}'
    assert settings["playback_policy"] == ["public"]
    assert settings["input"][0]["generated_subtitles"][0]["language_code"] == "en"
    assert mux.requests[0].headers["authorization"].startswith("Basic ")


async def test_create_direct_upload_without_subtitles(mux, provider):
    await provider.create_direct_upload('{"recordId":"r1"}')
    assert "input" not in mux.bodies("POST")[0]["new_asset_settings"]


async def test_provider_error_status_raises(mux, provider):
    mux.create_status = 500
    with pytest.raises(ProviderError):
        await provider.create_direct_upload('{"recordId":"r1"}')


async def test_transport_failure_raises_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = MuxClient("id", "secret", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(ProviderError):
            await client.cancel_direct_upload("upload-1")
    finally:
        await client.close()


async def test_cancel_direct_upload_hits_cancel_path(mux, provider):
    await provider.cancel_direct_upload("upload-9")
    assert mux.requests[0].method == "PUT"
    assert mux.requests[0].url.path == "/video/v1/uploads/upload-9/cancel"


def _header(payload: bytes, secret: str, timestamp: int) -> str:
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def test_valid_signature_passes():
    payload = json.dumps({"type": "video.asset.ready"}).encode()
    verify_signature(payload, _header(payload, "whsec", 1_700_000_000), "whsec", now=1_700_000_100)


def test_any_matching_v1_signature_passes():
    payload = b"{}"
    good = compute_signature(payload, "whsec", 1_700_000_000)
    verify_signature(payload, f"t=1700000000,v1=deadbeef,v1={good}", "whsec", now=1_700_000_000)


@pytest.mark.parametrize("header,now", [
    (None, 1_700_000_000),
    ("v1=abc", 1_700_000_000),
    ("t=soon,v1=abc", 1_700_000_000),
    ("t=1700000000,v1=abc", 1_700_000_000),
])
def test_bad_signature_headers_are_rejected(header, now):
    with pytest.raises(SignatureVerificationError):
        verify_signature(b"{}", header, "whsec", now=now)


def test_stale_signature_is_rejected():
    payload = b"{}"
    with pytest.raises(SignatureVerificationError, match="tolerance"):
        verify_signature(payload, _header(payload, "whsec", 1_700_000_000), "whsec", tolerance=300, now=1_700_000_301)


def test_tampered_body_is_rejected():
    header = _header(b'{"a":1}', "whsec", 1_700_000_000)
    with pytest.raises(SignatureVerificationError, match="mismatch"):
        verify_signature(b'{"a":2}', header, "whsec", now=1_700_000_000)
