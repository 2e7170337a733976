from __future__ import annotations

import asyncio

from api.chat_sessions import ChatSessionPool
from models.schemas import ChatState


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_idle_session_expires(make_gateway, make_llm, contract, audit_logger):
    clock = ManualClock()
    pool = ChatSessionPool(
        make_gateway(contracts=[contract]), llm=make_llm(), audit_logger=audit_logger, ttl_seconds=60, clock=clock
    )
    chat = asyncio.run(pool.open("123.456.789-00", "segredo"))

    clock.now += 59
    assert pool.get(chat.session_id) is chat

    clock.now += 61
    assert pool.get(chat.session_id) is None
    assert chat.state == ChatState.CLOSED
    assert len(pool) == 0


def test_activity_keeps_session_alive(make_gateway, make_llm, contract, audit_logger):
    clock = ManualClock()
    pool = ChatSessionPool(
        make_gateway(contracts=[contract]), llm=make_llm(), audit_logger=audit_logger, ttl_seconds=60, clock=clock
    )
    chat = asyncio.run(pool.open("123.456.789-00", "segredo"))

    for _ in range(5):
        clock.now += 45
        assert pool.get(chat.session_id) is chat


def test_full_pool_evicts_least_recently_used(make_gateway, make_llm, contract, audit_logger):
    clock = ManualClock()
    pool = ChatSessionPool(
        make_gateway(contracts=[contract]),
        llm=make_llm(),
        audit_logger=audit_logger,
        ttl_seconds=3600,
        max_sessions=2,
        clock=clock,
    )
    first = asyncio.run(pool.open("123.456.789-00", "segredo"))
    clock.now += 1
    second = asyncio.run(pool.open("123.456.789-00", "segredo"))
    clock.now += 1
    pool.get(first.session_id)
    clock.now += 1
    third = asyncio.run(pool.open("123.456.789-00", "segredo"))

    assert len(pool) == 2
    assert pool.get(second.session_id) is None
    assert second.state == ChatState.CLOSED
    assert pool.get(first.session_id) is first
    assert pool.get(third.session_id) is third
