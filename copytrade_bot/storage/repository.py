from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from copytrade_bot.core.errors import LedgerUnavailable
from copytrade_bot.storage.models import HoldingRow


async def get_holding(session: AsyncSession, chain: str, token: str) -> HoldingRow | None:
    stmt = (
        select(HoldingRow)
        .where(HoldingRow.chain == chain, HoldingRow.token == token)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_holding(
    session: AsyncSession, chain: str, token: str, amount: str | None
) -> HoldingRow:
    row = await get_holding(session, chain, token)
    if row is None:
        row = HoldingRow(chain=chain, token=token, amount=amount)
        session.add(row)
        try:
            await session.commit()
            return row
        except IntegrityError:
            # Another writer inserted the same (chain, token) first
            await session.rollback()
            row = await get_holding(session, chain, token)
            if row is None:
                raise
    if amount is not None and row.amount != amount:
        row.amount = amount
        row.updated_at = datetime.utcnow()
        await session.commit()
    return row


async def delete_holding(session: AsyncSession, chain: str, token: str) -> None:
    await session.execute(
        delete(HoldingRow).where(HoldingRow.chain == chain, HoldingRow.token == token)
    )
    await session.commit()


async def holding_exists(session: AsyncSession, chain: str, token: str) -> bool:
    stmt = (
        select(HoldingRow.id)
        .where(HoldingRow.chain == chain, HoldingRow.token == token)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def list_holdings(session: AsyncSession, chain: str) -> list[HoldingRow]:
    stmt = (
        select(HoldingRow)
        .where(HoldingRow.chain == chain)
        .order_by(HoldingRow.added_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


class SqlHoldingsStore:
    """HoldingsStore backed by the `holdings` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, chain: str, token: str, amount: str | None) -> None:
        try:
            async with self._sessions() as session:
                await upsert_holding(session, chain, token, amount)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(str(exc)) from exc

    async def remove(self, chain: str, token: str) -> None:
        try:
            async with self._sessions() as session:
                await delete_holding(session, chain, token)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(str(exc)) from exc

    async def has(self, chain: str, token: str) -> bool:
        try:
            async with self._sessions() as session:
                return await holding_exists(session, chain, token)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(str(exc)) from exc

    async def all(self, chain: str) -> dict[str, str | None]:
        try:
            async with self._sessions() as session:
                rows = await list_holdings(session, chain)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(str(exc)) from exc
        return {row.token: row.amount for row in rows}
