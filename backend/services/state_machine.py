"""
Status transition tables for commissions and withdrawal requests
"""

from typing import Dict, List, Set
from fastapi import HTTPException


class CommissionStatus:
    PENDING = "PENDING"
    AVAILABLE = "AVAILABLE"
    REQUESTED = "REQUESTED"
    PAID = "PAID"
    CANCELED = "CANCELED"


class CommissionType:
    SUBSCRIPTION = "SUBSCRIPTION"
    BALANCE_CARRY = "BALANCE_CARRY"


class WithdrawalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"


class StateMachine:
    """Validates status changes against a transition table"""

    def __init__(self, name: str, transitions: Dict[str, Set[str]]):
        self.name = name
        self.transitions = transitions

    def can_transition(self, current_status: str, new_status: str) -> bool:
        return new_status in self.transitions.get(current_status, set())

    def get_valid_transitions(self, current_status: str) -> List[str]:
        return sorted(self.transitions.get(current_status, set()))

    def is_terminal_state(self, status: str) -> bool:
        return len(self.transitions.get(status, set())) == 0

    def non_terminal_states(self) -> List[str]:
        return [s for s, targets in self.transitions.items() if targets]

    def ensure_transition(self, current_status: str, new_status: str) -> None:
        """Raise 400 when the move is not in the table"""
        if current_status not in self.transitions:
            raise HTTPException(status_code=400, detail="Status inválido")
        if self.is_terminal_state(current_status):
            raise HTTPException(status_code=400, detail="Solicitação já foi processada")
        if not self.can_transition(current_status, new_status):
            raise HTTPException(
                status_code=400,
                detail=f"Transição de status inválida: {current_status} -> {new_status}",
            )


commission_state_machine = StateMachine(
    "commission",
    {
        CommissionStatus.PENDING: {CommissionStatus.AVAILABLE, CommissionStatus.CANCELED},
        CommissionStatus.AVAILABLE: {CommissionStatus.REQUESTED, CommissionStatus.CANCELED},
        # back to AVAILABLE when the reserving withdrawal is rejected or canceled
        CommissionStatus.REQUESTED: {CommissionStatus.PAID, CommissionStatus.AVAILABLE},
        CommissionStatus.PAID: set(),
        CommissionStatus.CANCELED: set(),
    },
)

withdrawal_state_machine = StateMachine(
    "withdrawal",
    {
        WithdrawalStatus.PENDING: {WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED, WithdrawalStatus.CANCELED},
        WithdrawalStatus.APPROVED: {WithdrawalStatus.PROCESSING, WithdrawalStatus.PAID, WithdrawalStatus.REJECTED},
        WithdrawalStatus.PROCESSING: {WithdrawalStatus.PAID, WithdrawalStatus.REJECTED},
        WithdrawalStatus.PAID: set(),
        WithdrawalStatus.REJECTED: set(),
        WithdrawalStatus.CANCELED: set(),
    },
)

OPEN_WITHDRAWAL_STATUSES = withdrawal_state_machine.non_terminal_states()
