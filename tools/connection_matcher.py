"""Attach one diagnostics session to a contract.

The radius endpoint answers per customer (tax id), not per contract, so a
customer with several contracts gets every session back. The rules below are
a best-effort approximation: two contracts with the same plan, or streets that
share a first word, can be attached to the wrong session.
"""
from __future__ import annotations

from typing import Optional, Sequence

from models.schemas import ConnectionSession, Contract

MIN_STREET_KEYWORD_LENGTH = 4


def street_keyword(street: str) -> str:
    tokens = (street or "").split()
    if not tokens or len(tokens[0]) < MIN_STREET_KEYWORD_LENGTH:
        return ""
    return tokens[0].lower()


def match_by_plan(contract: Contract, sessions: Sequence[ConnectionSession]) -> Optional[ConnectionSession]:
    plan = (contract.plan_name or "").strip().lower()
    if not plan:
        return None
    return next((s for s in sessions if s.plan_name and s.plan_name.strip().lower() == plan), None)


def match_by_street(contract: Contract, sessions: Sequence[ConnectionSession]) -> Optional[ConnectionSession]:
    keyword = street_keyword(contract.street)
    if not keyword:
        return None
    return next((s for s in sessions if s.street and keyword in s.street.lower()), None)


def match_first_online(contract: Contract, sessions: Sequence[ConnectionSession]) -> Optional[ConnectionSession]:
    return next((s for s in sessions if s.online), None)


def match_connection(contract: Contract, sessions: Sequence[ConnectionSession]) -> Optional[ConnectionSession]:
    """Plan, then street keyword, then first online, then first; None when empty."""
    if not sessions:
        return None
    for strategy in (match_by_plan, match_by_street, match_first_online):
        match = strategy(contract, sessions)
        if match is not None:
            return match
    return sessions[0]
