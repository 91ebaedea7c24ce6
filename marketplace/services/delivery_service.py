"""
Marketplace — Item delivery engine

Writes purchased items into a character's depot (player_depotitems) and
records the delivery in item_deliveries, all in one transaction. The
delivery record keyed by (source, reference id) is the idempotency guard:
a replayed webhook, an admin redelivery or a lost race all end as a no-op.
"""
import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import Settings, get_settings
from marketplace.core.errors import NotFound, Validation
from marketplace.core.retry import retry_on_conflict
from marketplace.db.database import Database
from marketplace.models import (
    BossPointsPurchase, DeliveryRecord, DeliverySource, Order, OrderStatus, Player, PlayerDepotItem,
)
from marketplace.models.order import check_transition
from marketplace.schemas.bundle import DeliveryEnvelope, DeliveryItem

logger = logging.getLogger(__name__)


class DeliveryService:
    def __init__(self, db: Database, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def deliver(
        self,
        player_id: int,
        items: Sequence[DeliveryItem],
        reference_id: int,
        source: DeliverySource = DeliverySource.ORDER,
    ) -> DeliveryRecord:
        """
        Deliver `items` to the character's depot exactly once per
        (source, reference_id). All-or-nothing: any failure rolls back every
        depot row written by this call.

        A uniqueness conflict (two deliveries picking the same depot slot,
        or the same reference delivered concurrently) re-runs the whole
        transaction, idempotency check first.
        """
        if not items:
            raise Validation("Nothing to deliver", reference_id=reference_id)
        return await retry_on_conflict(
            lambda: self._deliver_once(player_id, items, reference_id, source),
            f"Delivery {source.value}/{reference_id}",
            self.settings,
        )

    async def _deliver_once(
        self, player_id: int, items: Sequence[DeliveryItem], reference_id: int, source: DeliverySource
    ) -> DeliveryRecord:
        async with self.db.transaction() as session:
            existing = await self._find_record(session, source, reference_id)
            if existing is not None:
                logger.info(
                    "Delivery %s/%s already recorded (id=%s), skipping",
                    source.value, reference_id, existing.id,
                )
                await self._mark_source_delivered(
                    session, source, reference_id, existing.delivered_at, strict=False
                )
                return existing

            player = await session.get(Player, player_id)
            if player is None:
                raise NotFound("Character not found", player_id=player_id)

            pid = await self._resolve_container(session, player_id)
            next_sid = await self._next_sid(session, player_id)

            for offset, item in enumerate(items):
                session.add(PlayerDepotItem(
                    player_id=player_id,
                    sid=next_sid + offset,
                    pid=pid,
                    itemtype=item.item_id,
                    count=item.count,
                    attributes=b"",
                ))

            delivered_at = datetime.now(timezone.utc)
            record = DeliveryRecord(
                source=source,
                order_id=reference_id,
                player_id=player_id,
                account_id=player.account_id,
                items_json=DeliveryEnvelope(
                    order_id=reference_id,
                    items=list(items),
                    delivered_at=delivered_at,
                    player_id=player_id,
                ),
                delivered_at=delivered_at,
                # depot writes are immediate, there is no separate claim step
                claimed=True,
                claimed_at=delivered_at,
            )
            session.add(record)
            await session.flush()

            await self._mark_source_delivered(session, source, reference_id, delivered_at)

        logger.info(
            "Delivered %d item(s) to player %s for %s %s (sids %d..%d, pid=%d)",
            len(items), player_id, source.value, reference_id,
            next_sid, next_sid + len(items) - 1, pid,
        )
        return record

    async def pending_deliveries(self, player_id: int) -> list[DeliveryRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(DeliveryRecord)
                .where(DeliveryRecord.player_id == player_id, DeliveryRecord.claimed.is_(False))
                .order_by(DeliveryRecord.delivered_at)
            )
            return list(result.scalars().all())

    async def mark_claimed(self, delivery_id: int) -> DeliveryRecord:
        async with self.db.transaction() as session:
            record = await session.get(DeliveryRecord, delivery_id, with_for_update=True)
            if record is None:
                raise NotFound("Delivery not found", delivery_id=delivery_id)
            if not record.claimed:
                record.claimed = True
                record.claimed_at = datetime.now(timezone.utc)
            return record

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _find_record(
        self, session: AsyncSession, source: DeliverySource, reference_id: int
    ) -> DeliveryRecord | None:
        result = await session.execute(
            select(DeliveryRecord).where(
                DeliveryRecord.source == source, DeliveryRecord.order_id == reference_id
            )
        )
        return result.scalar_one_or_none()

    async def _resolve_container(self, session: AsyncSession, player_id: int) -> int:
        """Reuse the parent container of the character's existing depot items, else the depot root."""
        result = await session.execute(
            select(PlayerDepotItem.pid)
            .where(PlayerDepotItem.player_id == player_id)
            .order_by(PlayerDepotItem.sid)
            .limit(1)
        )
        pid = result.scalar_one_or_none()
        return self.settings.DEPOT_ROOT_PID if pid is None else pid

    async def _next_sid(self, session: AsyncSession, player_id: int) -> int:
        result = await session.execute(
            select(func.coalesce(func.max(PlayerDepotItem.sid), 0))
            .where(PlayerDepotItem.player_id == player_id)
        )
        return int(result.scalar_one()) + 1

    async def _mark_source_delivered(
        self,
        session: AsyncSession,
        source: DeliverySource,
        reference_id: int,
        delivered_at: datetime,
        strict: bool = True,
    ) -> None:
        model = Order if source is DeliverySource.ORDER else BossPointsPurchase
        row = await session.get(model, reference_id, with_for_update=True)
        if row is None:
            logger.warning("Delivered %s %s has no matching source row", source.value, reference_id)
            return
        if row.status == OrderStatus.DELIVERED:
            return
        if not strict and row.status != OrderStatus.APPROVED:
            return
        check_transition(row.status, OrderStatus.DELIVERED)
        row.status = OrderStatus.DELIVERED
        row.delivered_at = delivered_at
