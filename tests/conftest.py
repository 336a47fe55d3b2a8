"""Shared test fixtures."""
import pytest

from matchflow.adapters.events import EngagementEventRouter
from matchflow.core.capacity import ShortlistCapacityGuard
from matchflow.core.engagement_fsm import EngagementFSM
from matchflow.core.engagement_states import EngagementStage, PairId
from matchflow.core.journey import JourneyProjector, ProjectionDispatcher
from matchflow.db.database import build_engine, build_session_factory, init_db
from matchflow.db.models import ClientJourney, Engagement, utcnow


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with schema created. One database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'engagements.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def projector(session_factory):
    return JourneyProjector(session_factory)


@pytest.fixture
def dispatcher(projector):
    """No backoff so retry tests don't sleep."""
    return ProjectionDispatcher(projector, max_attempts=2, backoff_seconds=0)


@pytest.fixture
def fsm(session_factory, dispatcher):
    return EngagementFSM(
        session_factory,
        dispatcher=dispatcher,
        capacity=ShortlistCapacityGuard(limit=4),
        max_attempts=2,
    )


@pytest.fixture
def events(session_factory, fsm, projector):
    return EngagementEventRouter(session_factory, fsm, projector)


@pytest.fixture
def apply(fsm, dispatcher):
    """
    apply_event, then wait for the journey follow-ups it scheduled.
    SQLite allows one writer at a time, so tests never leave projections
    running behind the next step.
    """
    async def _apply(pair, event, **kwargs):
        result = await fsm.apply_event(pair, event, **kwargs)
        await dispatcher.drain()
        return result
    return _apply


@pytest.fixture
def seed(session_factory):
    """Write engagement rows directly, bypassing the rule table (setup only)."""
    async def _seed(pair: PairId, stage: EngagementStage, **columns):
        async with session_factory() as session:
            async with session.begin():
                now = utcnow()
                session.add(Engagement(
                    client_id=pair.client_id,
                    trainer_id=pair.trainer_id,
                    stage=stage.value,
                    created_at=now,
                    updated_at=now,
                    **columns,
                ))
    return _seed


@pytest.fixture
def seed_journey(session_factory):
    async def _seed(client_id: str, stage):
        async with session_factory() as session:
            async with session.begin():
                session.add(ClientJourney(
                    client_id=client_id,
                    stage=stage.value if stage else None,
                    updated_at=utcnow(),
                ))
    return _seed


@pytest.fixture
def load(session_factory):
    """Read one engagement row (None when the pair has no record)."""
    async def _load(pair: PairId):
        async with session_factory() as session:
            return await session.get(Engagement, (pair.client_id, pair.trainer_id))
    return _load


@pytest.fixture
def pair():
    return PairId("client-1", "trainer-1")
