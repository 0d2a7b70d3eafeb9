"""
Persistence adapters over SQLAlchemy.

``SqlTransactionStore`` is the durable transaction log. Settlement goes through
``transition``, a conditional UPDATE that only matches rows still in Pending,
so concurrent reconcilers cannot both settle one transaction.

The read path also carries a data-quality backstop: a stored selling price of
zero or less is recomputed, persisted and stamped with ``price_repaired_at`` so
the record shows up in audits instead of being silently fixed on every read.
"""
from datetime import datetime, time, timedelta, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_hub.config import Settings
from voucher_hub.core.categories import classify
from voucher_hub.core.errors import StoreError
from voucher_hub.core.models import (
    Provider,
    Transaction,
    TransactionFilter,
    TransactionSource,
    TransactionStatus,
    utcnow,
)
from voucher_hub.core.pricing import PriceResolver
from voucher_hub.database.models import AppSetting, PriceOverride, TransactionRecord
from voucher_hub.integrations import credentials as keys
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(tx: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=tx.id,
        product_name=tx.product_name,
        details=tx.details,
        cost_price=tx.cost_price,
        selling_price=tx.selling_price,
        status=tx.status.value,
        timestamp=_as_utc(tx.timestamp),
        serial_number=tx.serial_number,
        failure_reason=tx.failure_reason,
        buyer_sku_code=tx.buyer_sku_code,
        original_customer_no=tx.original_customer_no,
        product_category=tx.product_category,
        product_brand=tx.product_brand,
        category_key=tx.category_key,
        provider=tx.provider.value,
        provider_transaction_id=tx.provider_transaction_id,
        source=tx.source.value,
        price_repaired_at=_as_utc(tx.price_repaired_at),
        created_at=utcnow(),
    )


def _from_record(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        product_name=record.product_name,
        details=record.details,
        cost_price=record.cost_price,
        selling_price=record.selling_price,
        status=TransactionStatus(record.status),
        timestamp=_as_utc(record.timestamp),
        buyer_sku_code=record.buyer_sku_code,
        original_customer_no=record.original_customer_no,
        product_category=record.product_category,
        product_brand=record.product_brand,
        provider=Provider(record.provider),
        category_key=record.category_key,
        serial_number=record.serial_number,
        failure_reason=record.failure_reason,
        provider_transaction_id=record.provider_transaction_id,
        source=TransactionSource(record.source),
        price_repaired_at=_as_utc(record.price_repaired_at),
    )


class SqlTransactionStore:
    """Transaction store backed by an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        price_resolver: Optional[PriceResolver] = None,
    ):
        self.session_factory = session_factory
        self.price_resolver = price_resolver

    async def create(self, tx: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Raises:
            StoreError: If the write is not confirmed
        """
        try:
            async with self.session_factory() as session:
                session.add(_to_record(tx))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("transaction_create_failed", transaction_id=tx.id, error=str(e))
            raise StoreError(f"Failed to store transaction {tx.id}: {e}") from e

        logger.info(
            "transaction_stored",
            transaction_id=tx.id,
            status=tx.status.value,
            provider=tx.provider.value,
        )
        return tx

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        """Load one transaction, applying the read-path repair step."""
        try:
            async with self.session_factory() as session:
                record = await session.get(TransactionRecord, transaction_id)
                if record is None:
                    return None
                return await self._hydrate(session, record)
        except SQLAlchemyError as e:
            logger.error("transaction_read_failed", transaction_id=transaction_id, error=str(e))
            raise StoreError(f"Failed to read transaction {transaction_id}: {e}") from e

    async def list(self, filters: Optional[TransactionFilter] = None) -> List[Transaction]:
        """
        List transactions newest first.

        Status, provider and date range are pushed into the query; category is
        matched after reclassification.
        """
        filters = filters or TransactionFilter()
        stmt = select(TransactionRecord)
        if filters.status is not None:
            stmt = stmt.where(TransactionRecord.status == filters.status.value)
        if filters.provider is not None:
            stmt = stmt.where(TransactionRecord.provider == filters.provider.value)
        if filters.date_from is not None:
            start = datetime.combine(filters.date_from, time.min, tzinfo=timezone.utc)
            stmt = stmt.where(TransactionRecord.timestamp >= start)
        if filters.date_to is not None:
            end = datetime.combine(filters.date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
            stmt = stmt.where(TransactionRecord.timestamp < end)
        stmt = stmt.order_by(TransactionRecord.timestamp.desc())

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                records = result.scalars().all()
                transactions = [await self._hydrate(session, record) for record in records]
        except SQLAlchemyError as e:
            logger.error("transaction_list_failed", error=str(e))
            raise StoreError(f"Failed to list transactions: {e}") from e

        return [tx for tx in transactions if filters.matches(tx)]

    async def list_pending(self) -> List[Transaction]:
        """Current Pending set, re-read from the store on every call."""
        return await self.list(TransactionFilter(status=TransactionStatus.PENDING))

    async def transition(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        settled_at: datetime,
        serial_number: Optional[str] = None,
        failure_reason: Optional[str] = None,
        provider_transaction_id: Optional[str] = None,
    ) -> bool:
        """
        Settle a Pending transaction.

        The UPDATE matches only while the stored status is still Pending, so
        exactly one concurrent caller can win.

        Returns:
            bool: True if this call performed the transition
        """
        if not status.is_terminal:
            raise ValueError("transition target must be a terminal status")

        values: Dict[str, object] = {
            "status": status.value,
            "timestamp": _as_utc(settled_at),
            "serial_number": serial_number if status is TransactionStatus.SUKSES else None,
            "failure_reason": failure_reason if status is TransactionStatus.GAGAL else None,
        }
        if provider_transaction_id:
            values["provider_transaction_id"] = provider_transaction_id

        stmt = (
            update(TransactionRecord)
            .where(TransactionRecord.id == transaction_id)
            .where(TransactionRecord.status == TransactionStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("transaction_transition_failed", transaction_id=transaction_id, error=str(e))
            raise StoreError(f"Failed to update transaction {transaction_id}: {e}") from e

        applied = result.rowcount == 1
        logger.info(
            "transaction_transition",
            transaction_id=transaction_id,
            status=status.value,
            applied=applied,
        )
        return applied

    async def delete(self, transaction_id: str) -> bool:
        """Remove a transaction. Returns False if it did not exist."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(TransactionRecord).where(TransactionRecord.id == transaction_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("transaction_delete_failed", transaction_id=transaction_id, error=str(e))
            raise StoreError(f"Failed to delete transaction {transaction_id}: {e}") from e
        return result.rowcount > 0

    async def _hydrate(self, session: AsyncSession, record: TransactionRecord) -> Transaction:
        changed = False

        category_key = classify(
            record.product_category, record.product_brand or record.product_name
        )
        if record.category_key != category_key:
            record.category_key = category_key
            changed = True

        if (record.selling_price is None or record.selling_price <= 0) and self.price_resolver:
            repaired = await self.price_resolver.resolve(
                max(record.cost_price or 0, 0),
                record.buyer_sku_code,
                Provider(record.provider),
            )
            logger.warning(
                "selling_price_repaired",
                transaction_id=record.id,
                stored_selling_price=record.selling_price,
                repaired_selling_price=repaired,
            )
            metrics.record_selling_price_repair()
            record.selling_price = repaired
            record.price_repaired_at = utcnow()
            changed = True

        if changed:
            await session.commit()

        return _from_record(record)


class PriceOverrideRepository:
    """Admin-configured selling prices keyed by (provider, product code)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_override(self, provider: Provider, product_code: str) -> Optional[int]:
        async with self.session_factory() as session:
            override = await session.get(PriceOverride, (provider.value, product_code))
            if override is None or override.selling_price <= 0:
                return None
            return override.selling_price

    async def list_overrides(self) -> List[PriceOverride]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PriceOverride).order_by(PriceOverride.provider, PriceOverride.product_code)
            )
            return list(result.scalars().all())

    async def set_override(self, provider: Provider, product_code: str, selling_price: int) -> None:
        if selling_price <= 0:
            raise ValueError("selling_price must be positive")
        try:
            async with self.session_factory() as session:
                await session.merge(
                    PriceOverride(
                        provider=provider.value,
                        product_code=product_code,
                        selling_price=selling_price,
                        updated_at=utcnow(),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to save price override: {e}") from e
        logger.info(
            "price_override_saved",
            provider=provider.value,
            product_code=product_code,
            selling_price=selling_price,
        )

    async def delete_override(self, provider: Provider, product_code: str) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(PriceOverride)
                    .where(PriceOverride.provider == provider.value)
                    .where(PriceOverride.product_code == product_code)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete price override: {e}") from e
        return result.rowcount > 0


class SettingsRepository:
    """Key/value runtime settings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        async with self.session_factory() as session:
            setting = await session.get(AppSetting, key)
            return setting.value if setting is not None else None

    async def set(self, key: str, value: str) -> None:
        async with self.session_factory() as session:
            await session.merge(AppSetting(key=key, value=value, updated_at=utcnow()))
            await session.commit()


class SettingsCredentialSource:
    """
    Credentials from the settings table, falling back to environment defaults.

    Read on every call; nothing is cached.
    """

    def __init__(self, repository: SettingsRepository, settings: Settings):
        self.repository = repository
        self.defaults: Dict[str, Optional[str]] = {
            keys.VOUCHER_A_USERNAME: settings.voucher_a_username,
            keys.VOUCHER_A_API_KEY: settings.voucher_a_api_key,
            keys.VOUCHER_B_MEMBER_CODE: settings.voucher_b_member_code,
            keys.VOUCHER_B_SECRET: settings.voucher_b_secret,
            keys.TELEGRAM_BOT_TOKEN: settings.telegram_bot_token,
            keys.TELEGRAM_CHAT_IDS: settings.telegram_chat_ids,
            keys.NICKNAME_INQUIRY_URL: settings.nickname_inquiry_url,
        }

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.repository.get(key)
        except SQLAlchemyError as e:
            logger.warning("settings_lookup_failed", key=key, error=str(e))
            value = None
        if value is None or not value.strip():
            value = self.defaults.get(key)
        if value is None or not value.strip():
            return None
        return value.strip()
