from typing import Dict

from ..core.errors import InsufficientFundsError, ValidationError


class Treasury:
    """
    Gold balances keyed by account id.

    Actors use their actor id as account; territories use the string form of
    their LocationRef ("barony:b1").
    """

    def __init__(self):
        self._balances: Dict[str, int] = {}

    def balance(self, account_id: str) -> int:
        return self._balances.get(account_id, 0)

    def credit(self, account_id: str, amount: int):
        if amount < 0:
            raise ValidationError("Amount to credit must be non-negative.")
        self._balances[account_id] = self.balance(account_id) + amount

    def debit(self, account_id: str, amount: int):
        if amount < 0:
            raise ValidationError("Amount to debit must be non-negative.")
        current = self.balance(account_id)
        if current < amount:
            raise InsufficientFundsError(
                f"Insufficient gold in '{account_id}': have {current}, need {amount}."
            )
        self._balances[account_id] = current - amount

    def to_dict(self) -> Dict[str, int]:
        return dict(self._balances)

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> "Treasury":
        treasury = cls()
        treasury._balances = {account: int(amount) for account, amount in data.items()}
        return treasury
