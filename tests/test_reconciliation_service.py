import asyncio
from datetime import timedelta

from sqlalchemy import select

from conftest import FakeGateway, add_push_transaction, seed_tenancy
from core.errors import ExternalServiceFailure
from models.enums import TransactionStatus
from models.models import GatewayTransaction, Payment
from services.reconciliation_service import ReconciliationService

STALE = timedelta(minutes=10)


def reconciler(db, gateway, **kwargs):
    kwargs.setdefault("min_age_seconds", 120)
    kwargs.setdefault("batch_size", 50)
    kwargs.setdefault("item_delay_seconds", 0)
    return ReconciliationService(db, gateway=gateway, **kwargs)


async def status_of(db, transaction_id):
    result = await db.execute(
        select(GatewayTransaction.status).where(GatewayTransaction.id == transaction_id)
    )
    return result.scalar_one()


async def test_stale_pending_push_is_resolved_by_polling(db):
    tenancy = await seed_tenancy(db)
    transaction = await add_push_transaction(db, tenancy, "ws_CO_stale", age=STALE)
    gateway = FakeGateway({"ws_CO_stale": {"ResultCode": "0", "ResultDesc": "ok"}})

    summary = await reconciler(db, gateway).reconcile_pending()

    assert gateway.queried == ["ws_CO_stale"]
    assert summary == {"checked": 1, "resolved": 1, "still_pending": 0, "errors": 0}
    assert await status_of(db, transaction.id) == TransactionStatus.COMPLETED

    payment = (await db.execute(select(Payment))).scalar_one()
    # no receipt on a query answer, the checkout id is the reference
    assert payment.transaction_reference == "ws_CO_stale"


async def test_young_transactions_are_not_polled(db):
    tenancy = await seed_tenancy(db)
    await add_push_transaction(db, tenancy, "ws_CO_young", age=timedelta(seconds=5))
    gateway = FakeGateway({"ws_CO_young": {"ResultCode": "0"}})

    summary = await reconciler(db, gateway).reconcile_pending()

    assert gateway.queried == []
    assert summary["checked"] == 0


async def test_still_processing_leaves_transaction_pending(db):
    tenancy = await seed_tenancy(db)
    transaction = await add_push_transaction(db, tenancy, "ws_CO_wait", age=STALE)
    gateway = FakeGateway(
        {"ws_CO_wait": {"ResultCode": None, "ResultDesc": "The transaction is being processed"}}
    )

    summary = await reconciler(db, gateway).reconcile_pending()

    assert summary["still_pending"] == 1
    assert await status_of(db, transaction.id) == TransactionStatus.PENDING


async def test_query_failure_does_not_abort_the_batch(db):
    tenancy = await seed_tenancy(db)
    first = await add_push_transaction(db, tenancy, "ws_CO_err", age=STALE + STALE)
    second = await add_push_transaction(db, tenancy, "ws_CO_ok", age=STALE)
    gateway = FakeGateway(
        {
            "ws_CO_err": ExternalServiceFailure("gateway unreachable"),
            "ws_CO_ok": {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"},
        }
    )

    summary = await reconciler(db, gateway).reconcile_pending()

    assert gateway.queried == ["ws_CO_err", "ws_CO_ok"]
    assert summary["errors"] == 1
    assert summary["resolved"] == 1
    assert await status_of(db, first.id) == TransactionStatus.PENDING
    assert await status_of(db, second.id) == TransactionStatus.CANCELLED


async def test_batch_size_caps_the_cycle(db):
    tenancy = await seed_tenancy(db)
    for index in range(3):
        await add_push_transaction(
            db, tenancy, f"ws_CO_batch_{index}", age=STALE + timedelta(minutes=index)
        )
    gateway = FakeGateway()

    await reconciler(db, gateway, batch_size=2).reconcile_pending()

    # oldest first
    assert gateway.queried == ["ws_CO_batch_2", "ws_CO_batch_1"]


async def test_stop_signal_halts_between_items(db):
    tenancy = await seed_tenancy(db)
    await add_push_transaction(db, tenancy, "ws_CO_a", age=STALE + STALE)
    await add_push_transaction(db, tenancy, "ws_CO_b", age=STALE)
    gateway = FakeGateway()
    stop_event = asyncio.Event()

    original = gateway.query_status

    async def query_then_stop(checkout_request_id):
        stop_event.set()
        return await original(checkout_request_id)

    gateway.query_status = query_then_stop

    summary = await reconciler(db, gateway, item_delay_seconds=5).reconcile_pending(
        stop_event
    )

    assert gateway.queried == ["ws_CO_a"]
    assert summary["checked"] == 1


async def test_completed_transactions_are_left_alone(db):
    tenancy = await seed_tenancy(db)
    await add_push_transaction(
        db, tenancy, "ws_CO_done", age=STALE, status=TransactionStatus.COMPLETED
    )
    gateway = FakeGateway()

    await reconciler(db, gateway).reconcile_pending()

    assert gateway.queried == []
