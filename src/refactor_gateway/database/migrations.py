"""Database migration utilities."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import get_settings
from ..models.base import Base
from ..models.plan_limit import PlanLimit
from ..models.user import Plan
from .connection import db_manager, get_db_context

logger = logging.getLogger(__name__)


async def create_tables(engine: AsyncEngine = None):
    """Create all database tables."""
    if engine is None:
        if not db_manager.engine:
            db_manager.initialize()
        engine = db_manager.engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(engine: AsyncEngine = None):
    """Drop all database tables."""
    if engine is None:
        if not db_manager.engine:
            db_manager.initialize()
        engine = db_manager.engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def seed_plan_limits():
    """Migration: insert default plan limits when the table has no row for a plan.

    Existing rows are left untouched so limits edited by an admin survive
    restarts.
    """
    settings = get_settings()
    defaults = {
        Plan.FREE: settings.free_plan_limit,
        Plan.PRO: settings.pro_plan_limit,
    }

    async with get_db_context() as session:
        result = await session.execute(select(PlanLimit.plan))
        existing = set(result.scalars().all())

        for plan, limit in defaults.items():
            if plan in existing:
                continue
            session.add(PlanLimit(plan=plan, limit_value=limit))
            logger.info("Seeded plan limit %s=%d", plan.value, limit)

        await session.commit()
