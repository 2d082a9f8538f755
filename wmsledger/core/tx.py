# wmsledger/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


class ProbeDone(Exception):
    """用于 probe 事务块的控制流中断。"""


@asynccontextmanager
async def tx_probe(session: AsyncSession):
    """
    Probe 事务：整个动作照常执行（含全部校验与台账写入），结束后整体回滚。
    用于"试过账"：调用方拿到结果，但库存不变。
    """
    try:
        async with session.begin():
            yield
            raise ProbeDone()
    except ProbeDone:
        return


@asynccontextmanager
async def tx_commit(session: AsyncSession):
    """
    Commit 事务：正常 begin/commit，异常即回滚。
    """
    async with session.begin():
        yield


class TxManager:
    """
    统一的事务执行器：根据 probe 标志选择事务上下文。
    Service 内部不得控事务；一次工作流动作 = 一个事务。
    """

    @staticmethod
    async def run(session: AsyncSession, *, probe: bool = False, fn, **kwargs):
        ctx = tx_probe if probe else tx_commit
        result = None
        async with ctx(session):
            result = await fn(session=session, **kwargs)
        return result
