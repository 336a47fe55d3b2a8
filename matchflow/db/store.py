"""
Engagement Store
================
Every query the engine runs against the engagement tables lives here.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from matchflow.core.engagement_states import ACTIVE_STAGES, EngagementStage, PairId
from matchflow.db.models import ClientJourney, Engagement, EngagementEventLog, EventReceipt, utcnow


class EngagementStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Engagement rows ───────────────────────────────────────────────────────

    async def get(self, pair: PairId, lock: bool = False) -> Optional[Engagement]:
        query = select(Engagement).where(
            Engagement.client_id == pair.client_id,
            Engagement.trainer_id == pair.trainer_id,
        )
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    def create(self, pair: PairId) -> Engagement:
        now = utcnow()
        record = Engagement(
            client_id=pair.client_id,
            trainer_id=pair.trainer_id,
            stage=EngagementStage.BROWSING.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        return record

    async def count_in_stage(self, client_id: str, stage: EngagementStage) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Engagement)
            .where(Engagement.client_id == client_id, Engagement.stage == stage.value)
        )
        return result.scalar_one()

    async def count_active(self, client_id: str) -> int:
        """How many of the client's pairs are still in an active stage"""
        result = await self.session.execute(
            select(func.count())
            .select_from(Engagement)
            .where(
                Engagement.client_id == client_id,
                Engagement.stage.in_([stage.value for stage in ACTIVE_STAGES]),
            )
        )
        return result.scalar_one()

    async def list_for_client(self, client_id: str, stage: EngagementStage = None) -> list:
        query = select(Engagement).where(Engagement.client_id == client_id)
        if stage is not None:
            query = query.where(Engagement.stage == stage.value)
        result = await self.session.execute(query.order_by(Engagement.updated_at.desc()))
        return list(result.scalars().all())

    async def list_for_trainer(self, trainer_id: str, stage: EngagementStage = None) -> list:
        query = select(Engagement).where(Engagement.trainer_id == trainer_id)
        if stage is not None:
            query = query.where(Engagement.stage == stage.value)
        result = await self.session.execute(query.order_by(Engagement.updated_at.desc()))
        return list(result.scalars().all())

    # ── Event log ─────────────────────────────────────────────────────────────

    def log_event(self, pair: PairId, from_stage, event, to_stage,
                  source: str, source_ref: str = None, payload: dict = None, occurred_at=None):
        entry = EngagementEventLog(
            client_id=pair.client_id,
            trainer_id=pair.trainer_id,
            from_stage=from_stage.value,
            event=event.value,
            to_stage=to_stage.value,
            source=source,
            source_ref=source_ref,
            payload=payload or {},
            occurred_at=occurred_at or utcnow(),
        )
        self.session.add(entry)
        return entry

    async def history(self, pair: PairId) -> list:
        result = await self.session.execute(
            select(EngagementEventLog)
            .where(
                EngagementEventLog.client_id == pair.client_id,
                EngagementEventLog.trainer_id == pair.trainer_id,
            )
            .order_by(EngagementEventLog.occurred_at)
        )
        return list(result.scalars().all())

    # ── Receipts ──────────────────────────────────────────────────────────────

    async def has_receipt(self, source: str, source_ref: str, status: str) -> bool:
        result = await self.session.execute(
            select(EventReceipt.id).where(
                EventReceipt.source == source,
                EventReceipt.source_ref == source_ref,
                EventReceipt.status == status,
            )
        )
        return result.first() is not None

    def add_receipt(self, pair: PairId, source: str, source_ref: str, status: str):
        receipt = EventReceipt(
            source=source,
            source_ref=source_ref,
            status=status,
            client_id=pair.client_id,
            trainer_id=pair.trainer_id,
        )
        self.session.add(receipt)
        return receipt

    # ── Client journey ────────────────────────────────────────────────────────

    async def get_journey(self, client_id: str, lock: bool = False) -> Optional[ClientJourney]:
        query = select(ClientJourney).where(ClientJourney.client_id == client_id)
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def lock_client(self, client_id: str) -> ClientJourney:
        """
        Lock the client's journey row, creating it if needed.
        Serializes per-client checks such as the shortlist cap.
        """
        journey = await self.get_journey(client_id, lock=True)
        if journey is None:
            journey = ClientJourney(client_id=client_id, stage=None, updated_at=utcnow())
            self.session.add(journey)
        else:
            # Always write: backends that ignore FOR UPDATE (SQLite) still serialize here
            journey.updated_at = utcnow()
        await self.session.flush()
        return journey
