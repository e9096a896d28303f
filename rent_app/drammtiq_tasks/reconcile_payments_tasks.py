import dramatiq

from tasks.reconcile_pending_payments import run_reconciliation_cycle


def create_reconcile_payments_task():
    # the next cron run picks up anything a failed run left Pending
    @dramatiq.actor(
        queue_name="reconcile_pending_payments",
        max_retries=0,
        time_limit=600_000,
    )
    async def reconcile_pending_payments():
        return await run_reconciliation_cycle()

    return reconcile_pending_payments
