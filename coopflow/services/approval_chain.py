"""
Approval Chain Resolver.

Maps a request type to its ordered, role-gated approval ladder. Adding a
request type is a one-line edit to ``APPROVAL_CHAINS``; types without an
entry get the single-level ``DEFAULT_CHAIN`` so request creation stays total.

Usage:
    from coopflow.services.approval_chain import resolve_chain

    for step in resolve_chain("LOAN_APPLICATION"):
        print(step.level, step.approver_role, step.notes)
"""

from __future__ import annotations

from dataclasses import dataclass

from coopflow.models.auth import ADMIN, CHAIRMAN, TREASURER
from coopflow.models.request import (
    ACCOUNT_CLOSURE,
    ACCOUNT_UPDATE,
    BIODATA_UPDATE,
    LOAN_APPLICATION,
    PERSONAL_SAVINGS_CREATION,
    PERSONAL_SAVINGS_WITHDRAWAL,
    SAVINGS_WITHDRAWAL,
)


@dataclass(frozen=True)
class ChainStep:
    """One rung of an approval chain."""

    level: int
    approver_role: str
    notes: str


# Levels are implicit: position + 1.
APPROVAL_CHAINS: dict[str, tuple[tuple[str, str], ...]] = {
    LOAN_APPLICATION: (
        (ADMIN, "Initial loan application review"),
        (TREASURER, "Financial verification and review"),
        (CHAIRMAN, "Final loan approval"),
        (TREASURER, "Loan disbursement processing"),
    ),
    BIODATA_UPDATE: (
        (ADMIN, "Initial biodata verification"),
        (CHAIRMAN, "Final biodata approval"),
    ),
    ACCOUNT_UPDATE: (
        (ADMIN, "Account update verification"),
    ),
    SAVINGS_WITHDRAWAL: (
        (ADMIN, "Initial withdrawal request review"),
        (TREASURER, "Financial verification and review"),
        (CHAIRMAN, "Final withdrawal approval"),
        (TREASURER, "Withdrawal processing"),
    ),
    ACCOUNT_CLOSURE: (
        (ADMIN, "Initial account closure review"),
        (TREASURER, "Balance settlement verification"),
        (CHAIRMAN, "Final account closure approval"),
        (TREASURER, "Account closure processing"),
    ),
    PERSONAL_SAVINGS_CREATION: (
        (TREASURER, "Initial personal savings creation review"),
        (CHAIRMAN, "Financial verification"),
    ),
    PERSONAL_SAVINGS_WITHDRAWAL: (
        (TREASURER, "Initial personal savings withdrawal request review"),
        (CHAIRMAN, "Approval for personal savings withdrawal"),
        (TREASURER, "Withdrawal processing"),
    ),
}

DEFAULT_CHAIN: tuple[tuple[str, str], ...] = (
    (ADMIN, "Request review"),
)


def resolve_chain(request_type: str) -> list[ChainStep]:
    """Return the approval ladder for ``request_type`` as levels 1..N."""
    rungs = APPROVAL_CHAINS.get(request_type, DEFAULT_CHAIN)
    return [
        ChainStep(level=i, approver_role=role, notes=notes)
        for i, (role, notes) in enumerate(rungs, start=1)
    ]


def chain_length(request_type: str) -> int:
    return len(APPROVAL_CHAINS.get(request_type, DEFAULT_CHAIN))
