import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.date_helper import utc_now
from models.enums import TransactionKind, TransactionStatus
from models.models import GatewayTransaction


class GatewayTransactionRepo:
    def __init__(self, db):
        self.db = db

    async def get_by_id(self, transaction_id: uuid.UUID) -> GatewayTransaction | None:
        result = await self.db.execute(
            select(GatewayTransaction)
            .where(GatewayTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_checkout_request_id(
        self, checkout_request_id: str
    ) -> GatewayTransaction | None:
        result = await self.db.execute(
            select(GatewayTransaction).where(
                GatewayTransaction.checkout_request_id == checkout_request_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_merchant_request_id(
        self, merchant_request_id: str
    ) -> GatewayTransaction | None:
        result = await self.db.execute(
            select(GatewayTransaction).where(
                GatewayTransaction.merchant_request_id == merchant_request_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_conversation_id(
        self, conversation_id: str | None, originator_conversation_id: str | None = None
    ) -> GatewayTransaction | None:
        clauses = []
        if conversation_id:
            clauses.append(GatewayTransaction.conversation_id == conversation_id)
        if originator_conversation_id:
            clauses.append(
                GatewayTransaction.originator_conversation_id
                == originator_conversation_id
            )
        if not clauses:
            return None

        result = await self.db.execute(
            select(GatewayTransaction)
            .where(or_(*clauses))
            .order_by(GatewayTransaction.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_receipt_number(
        self, receipt_number: str
    ) -> GatewayTransaction | None:
        result = await self.db.execute(
            select(GatewayTransaction).where(
                or_(
                    GatewayTransaction.receipt_number == receipt_number,
                    GatewayTransaction.merchant_request_id == receipt_number,
                )
            )
        )
        return result.scalars().first()

    async def find_pending_push_for_reference(
        self, account_reference: str, amount: Decimal
    ) -> GatewayTransaction | None:
        result = await self.db.execute(
            select(GatewayTransaction)
            .where(
                GatewayTransaction.kind == TransactionKind.PUSH_PAYMENT,
                GatewayTransaction.status == TransactionStatus.PENDING,
                GatewayTransaction.account_reference == account_reference,
                GatewayTransaction.amount == amount,
            )
            .order_by(GatewayTransaction.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_stale_pending_push(
        self, created_before: datetime, limit: int
    ) -> Sequence[GatewayTransaction]:
        result = await self.db.execute(
            select(GatewayTransaction)
            .where(
                GatewayTransaction.kind == TransactionKind.PUSH_PAYMENT,
                GatewayTransaction.status == TransactionStatus.PENDING,
                GatewayTransaction.checkout_request_id.is_not(None),
                GatewayTransaction.created_at <= created_before,
            )
            .order_by(GatewayTransaction.created_at)
            .limit(limit)
        )
        return result.scalars().all()

    async def list_transactions(
        self,
        status: TransactionStatus | None = None,
        kind: TransactionKind | None = None,
        tenant_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[GatewayTransaction]:
        stmt = select(GatewayTransaction)
        if status:
            stmt = stmt.where(GatewayTransaction.status == status)
        if kind:
            stmt = stmt.where(GatewayTransaction.kind == kind)
        if tenant_id:
            stmt = stmt.where(GatewayTransaction.tenant_id == tenant_id)
        result = await self.db.execute(
            stmt.order_by(GatewayTransaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_unmatched(
        self, limit: int = 50, offset: int = 0
    ) -> List[GatewayTransaction]:
        """Completed payments the webhook could not attribute to a tenant."""
        result = await self.db.execute(
            select(GatewayTransaction)
            .where(
                GatewayTransaction.status == TransactionStatus.COMPLETED,
                GatewayTransaction.tenant_id.is_(None),
                GatewayTransaction.payment_id.is_(None),
            )
            .order_by(GatewayTransaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def assign_tenant(
        self, transaction_id: uuid.UUID, tenant_id: uuid.UUID
    ) -> bool:
        result = await self.db.execute(
            update(GatewayTransaction)
            .where(
                GatewayTransaction.id == transaction_id,
                GatewayTransaction.status == TransactionStatus.COMPLETED,
                GatewayTransaction.tenant_id.is_(None),
                GatewayTransaction.payment_id.is_(None),
            )
            .values(tenant_id=tenant_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        return result.rowcount == 1

    async def create(self, **fields) -> GatewayTransaction:
        transaction = GatewayTransaction(**fields)
        if not (
            transaction.merchant_request_id
            or transaction.checkout_request_id
            or transaction.conversation_id
        ):
            raise ValueError("A gateway transaction needs at least one correlation id")
        self.db.add(transaction)
        return await self._commit_and_refresh(transaction)

    async def create_or_get(self, **fields) -> tuple[GatewayTransaction, bool]:
        """Insert keyed by the correlation ids; on a duplicate return the stored row."""
        transaction = GatewayTransaction(**fields)
        self.db.add(transaction)

        try:
            await self.db.commit()
            await self.db.refresh(transaction)
            return transaction, True

        except IntegrityError:
            await self.db.rollback()

            existing = None
            if fields.get("merchant_request_id"):
                existing = await self.get_by_merchant_request_id(
                    fields["merchant_request_id"]
                )
            if existing is None and fields.get("checkout_request_id"):
                existing = await self.get_by_checkout_request_id(
                    fields["checkout_request_id"]
                )
            if existing is None and fields.get("receipt_number"):
                existing = await self.get_by_receipt_number(fields["receipt_number"])
            if existing is None:
                raise
            return existing, False

    async def transition(
        self,
        transaction_id: uuid.UUID,
        to_status: TransactionStatus,
        from_statuses: Iterable[TransactionStatus],
        **values,
    ) -> bool:
        """Compare-and-set status change. Only one concurrent caller wins."""
        result = await self.db.execute(
            update(GatewayTransaction)
            .where(
                GatewayTransaction.id == transaction_id,
                GatewayTransaction.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        return result.rowcount == 1

    async def link_payment(
        self, transaction_id: uuid.UUID, payment_id: uuid.UUID
    ) -> bool:
        result = await self.db.execute(
            update(GatewayTransaction)
            .where(
                GatewayTransaction.id == transaction_id,
                GatewayTransaction.payment_id.is_(None),
            )
            .values(payment_id=payment_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        return result.rowcount == 1

    async def refresh(self, transaction: GatewayTransaction) -> GatewayTransaction:
        await self.db.refresh(transaction)
        return transaction

    async def _commit_and_refresh(
        self, transaction: GatewayTransaction
    ) -> GatewayTransaction:
        try:
            await self.db.commit()
            await self.db.refresh(transaction)
            return transaction
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _commit(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
