import uuid

import pytest
from sqlalchemy import select

from conftest import WEBHOOK_HEADERS, FakeGateway, seed_tenancy
from fintechs.mpesa import GatewayResponse
from models.enums import PaymentStatus, TransactionStatus
from models.models import GatewayTransaction, Payment


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr("services.rent_payment_service.MpesaClient", lambda: fake)
    return fake


async def test_push_payment_is_recorded_once_accepted(client, db, gateway):
    tenancy = await seed_tenancy(db)

    res = await client.post(
        "/payments/stkpush",
        json={"tenant_id": str(tenancy.tenant.id), "amount": "15000"},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["checkout_request_id"] == "ws_CO_push_1"
    assert body["status"] == TransactionStatus.PENDING.value
    assert gateway.pushes == [("254712345678", 15000, "ACC-101")]

    transaction = (await db.execute(select(GatewayTransaction))).scalar_one()
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.merchant_request_id == "mr-1"
    assert transaction.tenant_id == tenancy.tenant.id


async def test_refused_push_payment_is_not_stored(client, db, gateway):
    tenancy = await seed_tenancy(db)
    gateway.push_response = GatewayResponse(
        accepted=False, data={"errorMessage": "Invalid Amount"}, description="Invalid Amount"
    )

    res = await client.post(
        "/payments/stkpush",
        json={"tenant_id": str(tenancy.tenant.id), "amount": "15000"},
    )

    assert res.status_code == 502
    assert (await db.execute(select(GatewayTransaction))).scalars().all() == []


async def test_push_payment_for_unknown_tenant(client, gateway):
    res = await client.post(
        "/payments/stkpush", json={"tenant_id": str(uuid.uuid4()), "amount": "100"}
    )
    assert res.status_code == 404


async def test_push_payment_rejects_bad_amount(client, gateway):
    res = await client.post(
        "/payments/stkpush", json={"tenant_id": str(uuid.uuid4()), "amount": "0"}
    )
    assert res.status_code == 422


async def test_query_resolves_and_materializes_payment(client, db, gateway):
    tenancy = await seed_tenancy(db)
    await client.post(
        "/payments/stkpush",
        json={"tenant_id": str(tenancy.tenant.id), "amount": "15000"},
    )
    gateway.query_results["ws_CO_push_1"] = {
        "ResultCode": "0",
        "ResultDesc": "The service request is processed successfully.",
    }

    res = await client.post("/payments/stkpush/ws_CO_push_1/query")

    assert res.status_code == 200
    assert res.json()["resolved"] is True
    assert res.json()["status"] == TransactionStatus.COMPLETED.value

    payment = (await db.execute(select(Payment))).scalar_one()
    assert payment.transaction_reference == "ws_CO_push_1"

    res = await client.get(f"/payments/transactions?status={TransactionStatus.COMPLETED.value}")
    assert res.status_code == 200
    assert [t["checkout_request_id"] for t in res.json()] == ["ws_CO_push_1"]


async def test_query_for_unknown_checkout(client, gateway):
    res = await client.post("/payments/stkpush/ws_CO_nope/query")
    assert res.status_code == 404


async def test_transaction_lookup(client, gateway):
    res = await client.get(f"/payments/transactions/{uuid.uuid4()}")
    assert res.status_code == 404


async def test_confirm_and_reject_pending_payment(client, db, gateway):
    tenancy = await seed_tenancy(db)
    await client.post(
        "/payments/stkpush",
        json={"tenant_id": str(tenancy.tenant.id), "amount": "15000"},
    )
    gateway.query_results["ws_CO_push_1"] = {"ResultCode": "0", "ResultDesc": "ok"}
    await client.post("/payments/stkpush/ws_CO_push_1/query")
    payment_id = (await db.execute(select(Payment.id))).scalar_one()

    res = await client.post(
        f"/payments/{payment_id}/confirm", json={"notes": "Seen on statement"}
    )
    assert res.status_code == 200
    assert res.json()["status"] == PaymentStatus.COMPLETED.value

    res = await client.post(f"/payments/{payment_id}/confirm")
    assert res.status_code == 400

    res = await client.post(f"/payments/{payment_id}/reject")
    assert res.status_code == 400

    res = await client.post(f"/payments/{uuid.uuid4()}/reject")
    assert res.status_code == 404


async def post_unmatched_paybill_payment(client, trans_id="RKL0000009"):
    await client.post(
        "/mpesa/c2b/confirmation",
        json={
            "TransactionType": "Pay Bill",
            "TransID": trans_id,
            "TransTime": "20260205101500",
            "TransAmount": "15000.00",
            "BusinessShortCode": "174379",
            "BillRefNumber": "UNKNOWN-9",
            "MSISDN": "254712345678",
        },
        headers=WEBHOOK_HEADERS,
    )


async def test_unmatched_payment_is_listed_and_resolved(client, db, gateway):
    tenancy = await seed_tenancy(db)
    await post_unmatched_paybill_payment(client)

    res = await client.get("/payments/transactions/unmatched")
    assert res.status_code == 200
    listed = res.json()
    assert len(listed) == 1
    assert listed[0]["receipt_number"] == "RKL0000009"
    transaction_id = listed[0]["id"]

    res = await client.post(
        f"/payments/transactions/{transaction_id}/resolve",
        json={"tenant_id": str(tenancy.tenant.id), "notes": "Typo in account number"},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["tenant_id"] == str(tenancy.tenant.id)
    assert body["status"] == PaymentStatus.COMPLETED.value
    assert body["transaction_reference"] == "RKL0000009"
    assert body["notes"] == "Typo in account number"

    transaction = (
        await db.execute(
            select(GatewayTransaction).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert transaction.tenant_id == tenancy.tenant.id
    assert str(transaction.payment_id) == body["id"]

    res = await client.get("/payments/transactions/unmatched")
    assert res.json() == []


async def test_resolving_twice_is_rejected(client, db, gateway):
    tenancy = await seed_tenancy(db)
    await post_unmatched_paybill_payment(client)
    transaction_id = (await db.execute(select(GatewayTransaction.id))).scalar_one()
    payload = {"tenant_id": str(tenancy.tenant.id)}

    first = await client.post(f"/payments/transactions/{transaction_id}/resolve", json=payload)
    second = await client.post(f"/payments/transactions/{transaction_id}/resolve", json=payload)

    assert first.status_code == 200
    assert second.status_code == 400
    assert len((await db.execute(select(Payment.id))).scalars().all()) == 1


async def test_resolve_unknown_transaction_or_tenant(client, db, gateway):
    await post_unmatched_paybill_payment(client)
    transaction_id = (await db.execute(select(GatewayTransaction.id))).scalar_one()

    res = await client.post(
        f"/payments/transactions/{uuid.uuid4()}/resolve",
        json={"tenant_id": str(uuid.uuid4())},
    )
    assert res.status_code == 404

    res = await client.post(
        f"/payments/transactions/{transaction_id}/resolve",
        json={"tenant_id": str(uuid.uuid4())},
    )
    assert res.status_code == 404


async def test_resolve_needs_landlord_payment_account(client, db, gateway):
    tenancy = await seed_tenancy(db, with_account=False)
    await post_unmatched_paybill_payment(client)
    transaction_id = (await db.execute(select(GatewayTransaction.id))).scalar_one()

    res = await client.post(
        f"/payments/transactions/{transaction_id}/resolve",
        json={"tenant_id": str(tenancy.tenant.id)},
    )

    assert res.status_code == 400
    res = await client.get("/payments/transactions/unmatched")
    assert len(res.json()) == 1


async def test_pending_push_is_not_resolvable(client, db, gateway):
    tenancy = await seed_tenancy(db)
    await client.post(
        "/payments/stkpush",
        json={"tenant_id": str(tenancy.tenant.id), "amount": "15000"},
    )
    transaction_id = (await db.execute(select(GatewayTransaction.id))).scalar_one()

    res = await client.post(
        f"/payments/transactions/{transaction_id}/resolve",
        json={"tenant_id": str(tenancy.tenant.id)},
    )

    assert res.status_code == 400
