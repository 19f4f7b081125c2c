import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from concierge.core import database
from concierge.core.database import Base
from concierge.core.errors import NotFoundError
from concierge.models import Recommendation
from concierge.services.generation_agent import AgentError
from concierge.services.session import AnswerInput, SessionService
from concierge.tasks import recommendation as tasks_module
from concierge.tasks import (
    find_pending_session_ids,
    generate_pending_recommendations_task,
    generate_recommendations_task,
    run_generation,
)
from factories import create_profile, create_smartphone_catalog


class BrokenAgent:
    async def generate(self, prompt: str) -> str:
        raise AgentError("offline")


async def _complete_new_session(db, catalog, profile):
    service = SessionService(db)
    session, _ = await service.create(profile, catalog.category.id)
    await service.submit_answers(session, [
        AnswerInput(catalog.usage.id, question_option_id=catalog.usage.options[0].id),
        AnswerInput(catalog.brand.id, question_option_id=catalog.brand.options[0].id),
    ])
    await service.complete(session)
    return session


async def test_run_generation_then_skip(db):
    catalog = await create_smartphone_catalog(db)
    profile = await create_profile(db)
    session = await _complete_new_session(db, catalog, profile)

    first = await run_generation(str(session.id), db=db, agent=BrokenAgent())
    second = await run_generation(str(session.id), db=db, agent=BrokenAgent())

    assert first == {"session_id": str(session.id), "status": "generated", "source": "fallback", "count": 3}
    assert second["status"] == "skipped"


async def test_run_generation_unknown_session(db):
    with pytest.raises(NotFoundError):
        await run_generation(str(uuid4()), db=db, agent=BrokenAgent())


def test_task_runs_repeatedly_in_one_worker(tmp_path, monkeypatch):
    # 每次任务都是新的事件循环
    url = f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}"
    monkeypatch.setattr(database.settings, "database_url", url)

    async def seed():
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with maker() as db:
            catalog = await create_smartphone_catalog(db)
            profile = await create_profile(db)
            first = await _complete_new_session(db, catalog, profile)
            second = await _complete_new_session(db, catalog, profile)
        await engine.dispose()
        return str(first.id), str(second.id)

    async def count_rows():
        engine = create_async_engine(url)
        async with engine.connect() as conn:
            count = await conn.scalar(select(func.count(Recommendation.id)))
        await engine.dispose()
        return count

    first_id, second_id = asyncio.run(seed())

    results = [
        generate_recommendations_task(first_id),
        generate_recommendations_task(second_id),
        generate_recommendations_task(first_id),
    ]

    assert [r["status"] for r in results] == ["generated", "generated", "skipped"]
    assert {r["source"] for r in results[:2]} == {"fallback"}
    assert asyncio.run(count_rows()) == 6


async def test_pending_sessions_exclude_generated_and_unfinished(db):
    catalog = await create_smartphone_catalog(db)
    profile = await create_profile(db)
    generated = await _complete_new_session(db, catalog, profile)
    pending = await _complete_new_session(db, catalog, profile)
    await SessionService(db).create(profile, catalog.category.id)
    await run_generation(str(generated.id), db=db, agent=BrokenAgent())

    assert await find_pending_session_ids(db) == [str(pending.id)]
    assert await find_pending_session_ids(db, limit=1) == [str(pending.id)]


def test_pending_sweep_dispatches_one_task_per_session(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
    monkeypatch.setattr(database.settings, "database_url", url)
    dispatched = []

    class RecordingTask:
        def delay(self, session_id):
            dispatched.append(session_id)

    monkeypatch.setattr(tasks_module, "generate_recommendations_task", RecordingTask())

    async def seed():
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with maker() as db:
            catalog = await create_smartphone_catalog(db)
            profile = await create_profile(db)
            first = await _complete_new_session(db, catalog, profile)
            second = await _complete_new_session(db, catalog, profile)
        await engine.dispose()
        return [str(first.id), str(second.id)]

    session_ids = asyncio.run(seed())

    result = generate_pending_recommendations_task()

    assert dispatched == session_ids
    assert result == {"dispatched": 2, "session_ids": session_ids}
