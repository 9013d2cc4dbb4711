import asyncio
import random
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from ecopoints.config import PAYOUT_GATEWAY_SETTINGS
from ecopoints.errors import GatewayRejected, GatewayUnavailable, MediaNotFound, ValidationFailed
from ecopoints.gateways import (
    BankTransferGateway, CryptoGateway, HttpPayoutGateway, PaypalGateway, PayoutGatewayService, StripeGateway, UpiGateway
)
from ecopoints.main import app
from ecopoints.models.db.enums import PaymentGateway, PayoutMethod
from ecopoints.storage import LocalFileStorage


# ---------------------------- Mock gateways ---------------------------- #

@pytest.mark.parametrize("gateway_cls,good,bad", [
    (StripeGateway, "acct_1Nv0FG", "someone@example.com"),
    (PaypalGateway, "asha@example.com", "asha"),
    (BankTransferGateway, "GB33 BUKB 2020 1555 5555 55", "12-34"),
    (CryptoGateway, "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh", "0xabc"),
    (UpiGateway, "asha@okaxis", "asha@gmail.com"),
])
def test_mock_gateway_destination_checks(gateway_cls, good, bad):
    gateway = gateway_cls(failure_rate=0.0, rng=random.Random(7))
    result = asyncio.run(gateway.initiate_payout(Decimal("10.00"), "x", good, "co_ref"))
    assert result.gateway_txn_id.startswith(gateway.txn_prefix)
    assert result.status == "processing"
    with pytest.raises(GatewayRejected):
        asyncio.run(gateway.initiate_payout(Decimal("10.00"), "x", bad, "co_ref"))


def test_mock_gateway_outage():
    gateway = PaypalGateway(failure_rate=1.0)
    with pytest.raises(GatewayUnavailable):
        asyncio.run(gateway.initiate_payout(Decimal("5.00"), "paypal", "asha@example.com", "co_ref"))


def test_gateway_service_defaults_to_mocks():
    service = PayoutGatewayService()
    assert isinstance(service.gateway_for(PayoutMethod.GOOGLE_PAY), UpiGateway)
    assert isinstance(service.gateway_for("card"), StripeGateway)
    assert service.gateway_name_for("net_banking") is PaymentGateway.BANK_TRANSFER
    assert service.supported_gateways() == sorted(g.value for g in PaymentGateway)
    with pytest.raises(ValidationFailed):
        service.gateway_for("cheque")


def test_gateway_service_uses_http_endpoint_when_configured(monkeypatch):
    monkeypatch.setitem(PAYOUT_GATEWAY_SETTINGS, "http_endpoint", "http://payouts.internal/")
    service = PayoutGatewayService()
    gateway = service.gateway_for("phonepe")
    assert isinstance(gateway, HttpPayoutGateway)
    assert gateway.name == "upi"
    assert gateway.endpoint == "http://payouts.internal"


def test_gateway_service_missing_gateway():
    service = PayoutGatewayService({PaymentGateway.PAYPAL: PaypalGateway(failure_rate=0.0)})
    with pytest.raises(ValidationFailed):
        service.gateway_for("stripe")


# ----------------------------- HTTP gateway ----------------------------- #

def _run_against(handler, call):
    async def _main():
        web_app = web.Application()
        web_app.router.add_post("/payouts", handler)
        server = TestServer(web_app)
        await server.start_server()
        try:
            return await call(str(server.make_url("/")))
        finally:
            await server.close()
    return asyncio.run(_main())


def test_http_gateway_success_sends_idempotency_key():
    seen = {}

    async def handler(request):
        seen["headers"] = dict(request.headers)
        seen["body"] = await request.json()
        return web.json_response({"gateway_txn_id": "gw_123", "status": "processing"})

    async def call(base_url):
        gateway = HttpPayoutGateway("paypal", base_url, api_key="k3y", timeout_seconds=5)
        return await gateway.initiate_payout(Decimal("12.50"), "paypal", "asha@example.com", "co_abc")

    result = _run_against(handler, call)
    assert result.gateway_txn_id == "gw_123"
    assert seen["headers"]["Idempotency-Key"] == "co_abc"
    assert seen["headers"]["Authorization"] == "Bearer k3y"
    assert seen["body"] == {
        "reference": "co_abc",
        "amount": "12.50",
        "method": "paypal",
        "destination_ref": "asha@example.com",
        "gateway": "paypal",
    }


@pytest.mark.parametrize("status,body,expected", [
    (400, {"error": "closed account"}, GatewayRejected),
    (503, {"error": "maintenance"}, GatewayUnavailable),
    (200, {"status": "processing"}, GatewayUnavailable),
])
def test_http_gateway_error_mapping(status, body, expected):
    async def handler(request):
        return web.json_response(body, status=status)

    async def call(base_url):
        gateway = HttpPayoutGateway("stripe", base_url, timeout_seconds=5)
        with pytest.raises(expected):
            await gateway.initiate_payout(Decimal("5.00"), "card", "card_1", "co_x")
        return True

    assert _run_against(handler, call)


def test_http_gateway_unreachable():
    gateway = HttpPayoutGateway("stripe", "http://127.0.0.1:9", timeout_seconds=2)
    with pytest.raises(GatewayUnavailable):
        asyncio.run(gateway.initiate_payout(Decimal("5.00"), "card", "card_1", "co_x"))


# ------------------------------- Storage ------------------------------- #

@pytest.fixture()
def local_storage(tmp_path):
    return LocalFileStorage(str(tmp_path), public_base_url="http://testserver/media", signing_secret="s3cret")


def test_local_storage_round_trip(local_storage, tmp_path):
    key = local_storage.store(b"video", prefix="media", extension=".mp4")
    assert key.startswith("media/") and key.endswith(".mp4")
    assert (tmp_path / key).read_bytes() == b"video"
    assert local_storage.fetch(key) == b"video"

    local_storage.delete(key)
    local_storage.delete(key)
    with pytest.raises(MediaNotFound):
        local_storage.fetch(key)


def test_local_storage_refuses_keys_outside_root(local_storage):
    with pytest.raises(ValidationFailed):
        local_storage.fetch("../../etc/passwd")


def test_local_storage_signed_urls(local_storage):
    key = local_storage.store(b"thumb", prefix="thumbnails", extension=".jpg")
    url = urlparse(local_storage.signed_url(key, 60))
    params = parse_qs(url.query)
    expires, signature = int(params["expires"][0]), params["signature"][0]

    assert url.path == f"/media/{key}"
    assert local_storage.verify_signed(key, expires, signature)
    assert not local_storage.verify_signed(key, expires, "0" * 64)
    assert not local_storage.verify_signed("thumbnails/other.jpg", expires, signature)
    assert not local_storage.verify_signed(key, expires - 3600, signature)


def test_media_endpoint_serves_signed_urls_only(client, local_storage):
    app.state.storage = local_storage  # type: ignore[attr-defined]
    key = local_storage.store(b"thumb-bytes", prefix="thumbnails", extension=".jpg")
    url = urlparse(local_storage.signed_url(key, 60))

    ok = client.get(f"{url.path}?{url.query}")
    assert ok.status_code == 200
    assert ok.content == b"thumb-bytes"
    assert ok.headers["content-type"] == "image/jpeg"

    forged = client.get(f"{url.path}?expires=9999999999&signature={'0' * 64}")
    assert forged.status_code == 404
