"""
Token Model for the StableBase protocol.

This module simulates the balance bookkeeping of the tokens the protocol moves
around: SBD (the stablecoin minted against collateral), SBR (the stability pool
emission token), DFIRE (the staking token) and the native collateral currency.
Only balances are tracked; allowances and transfer hooks are out of scope.
"""

import logging
from typing import Dict

from .errors import InsufficientBalance, InvalidAmount

logger = logging.getLogger(__name__)

# Protocol-owned accounts
CDP_ACCOUNT = "StableBaseCDP"            # Holds the collateral of every position
STABILITY_POOL_ACCOUNT = "StabilityPool"  # Holds staked SBD and collateral gains
STAKING_POOL_ACCOUNT = "DFIREStaking"     # Holds staked DFIRE and fee rewards


class Token:
    """
    Simulates an ERC20-style balance sheet.
    """

    def __init__(self, name: str, symbol: str):
        self.name = name
        self.symbol = symbol

        # Total token supply
        self.total_supply = 0

        # Total amount burned over the lifetime of the token
        self.total_burned = 0

        # Mapping of accounts to balances
        self.balances: Dict[str, int] = {}

    def balance_of(self, account) -> int:
        """Returns the balance of the given account."""
        return self.balances.get(account, 0)

    def mint(self, recipient, amount: int) -> bool:
        """
        Mints new tokens to the recipient account.

        Args:
            recipient: Account receiving the minted tokens
            amount: Amount of tokens to mint

        Returns:
            True if successful
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        self.balances[recipient] = self.balance_of(recipient) + amount
        self.total_supply += amount
        logger.debug("%s mint %d to %s", self.symbol, amount, recipient)
        return True

    def burn(self, from_account, amount: int) -> bool:
        """
        Burns tokens from the given account.

        Args:
            from_account: Account to burn tokens from
            amount: Amount of tokens to burn

        Returns:
            True if successful
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        balance = self.balance_of(from_account)
        if balance < amount:
            raise InsufficientBalance(f"Insufficient {self.symbol} balance")

        self.balances[from_account] = balance - amount
        self.total_supply -= amount
        self.total_burned += amount
        logger.debug("%s burn %d from %s", self.symbol, amount, from_account)
        return True

    def transfer(self, sender, recipient, amount: int) -> bool:
        """
        Transfers tokens from sender to recipient.

        Args:
            sender: Account sending the tokens
            recipient: Account receiving the tokens
            amount: Amount of tokens to transfer

        Returns:
            True if successful
        """
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero")

        sender_balance = self.balance_of(sender)
        if sender_balance < amount:
            raise InsufficientBalance(f"Insufficient {self.symbol} balance")

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        return True

    def move(self, sender, recipient, amount: int):
        """Transfers ``amount`` unless it is zero."""
        if amount:
            self.transfer(sender, recipient, amount)
