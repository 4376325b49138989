"""
Local asset ledger used by settlement.

The settlement engine only needs ``credit``; ``BalanceLedger`` states that
contract. ``AssetLedger`` is an in-memory implementation with governance
created asset classes, optional supply caps and 128-bit balances.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import (
    AlreadyRegistered,
    BadOrigin,
    InsufficientBalance,
    InsufficientCapacity,
    UnknownAsset,
    ValidationError,
)
from ..logging import get_logger
from .bridge_types import MAX_U128

logger = get_logger(__name__)


class BalanceLedger(ABC):
    """Balance collaborator required by the settlement engine."""

    @abstractmethod
    def credit(self, account: str, asset_id: str, amount: int) -> None:
        """Increase ``account``'s balance of ``asset_id``.

        Raises:
            UnknownAsset: the asset is not registered.
            InsufficientCapacity: the credit would overflow a balance or
                the asset's supply cap.
        """
        pass


@dataclass
class AssetClass:
    """A fungible asset that bridged value can be minted into."""

    asset_id: str
    symbol: str = ""
    decimals: int = 18
    max_supply: Optional[int] = None
    total_supply: int = 0
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "max_supply": self.max_supply,
            "total_supply": self.total_supply,
            "created_at": self.created_at,
        }


class AssetLedger(BalanceLedger):
    """In-memory asset classes and balances."""

    def __init__(self, governance_account: Optional[str] = None):
        self.governance_account = governance_account
        self.assets: Dict[str, AssetClass] = {}
        self.balances: Dict[str, Dict[str, int]] = {}  # asset_id -> {account: balance}
        self._lock = threading.RLock()

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                "Amount must be a positive integer",
                field="amount",
                value=amount,
                expected="int > 0",
            )

    def create_asset(
        self,
        caller: str,
        asset_id: str,
        symbol: str = "",
        decimals: int = 18,
        max_supply: Optional[int] = None,
    ) -> AssetClass:
        """Create an asset class. Privileged when a governance account is set."""
        if self.governance_account is not None and caller != self.governance_account:
            raise BadOrigin(caller)
        if max_supply is not None and not 0 < max_supply <= MAX_U128:
            raise ValidationError(
                "max_supply must be a positive 128-bit value",
                field="max_supply",
                value=max_supply,
            )

        with self._lock:
            if asset_id in self.assets:
                raise AlreadyRegistered(asset_id, kind="Asset")
            asset = AssetClass(
                asset_id=asset_id, symbol=symbol, decimals=decimals, max_supply=max_supply
            )
            self.assets[asset_id] = asset
            self.balances[asset_id] = {}

        logger.info(f"Asset {asset_id} created", extra=asset.to_dict())
        return asset

    def has_asset(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self.assets

    def credit(self, account: str, asset_id: str, amount: int) -> None:
        """Mint ``amount`` of ``asset_id`` to ``account``."""
        self._check_amount(amount)

        with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None:
                raise UnknownAsset(asset_id)

            cap = asset.max_supply if asset.max_supply is not None else MAX_U128
            new_supply = asset.total_supply + amount
            new_balance = self.balances[asset_id].get(account, 0) + amount
            if new_supply > cap or new_balance > MAX_U128:
                raise InsufficientCapacity(asset_id, amount)

            asset.total_supply = new_supply
            self.balances[asset_id][account] = new_balance

        logger.debug(
            f"Credited {amount} {asset_id} to {account}",
            extra={"account": account, "asset_id": asset_id, "amount": amount},
        )

    def debit(self, account: str, asset_id: str, amount: int) -> None:
        """Burn ``amount`` of ``asset_id`` from ``account``."""
        self._check_amount(amount)

        with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None:
                raise UnknownAsset(asset_id)

            balance = self.balances[asset_id].get(account, 0)
            if balance < amount:
                raise InsufficientBalance(account, asset_id, amount)

            asset.total_supply -= amount
            if balance == amount:
                del self.balances[asset_id][account]
            else:
                self.balances[asset_id][account] = balance - amount

    def balance_of(self, account: str, asset_id: str) -> int:
        with self._lock:
            return self.balances.get(asset_id, {}).get(account, 0)

    def total_supply(self, asset_id: str) -> int:
        with self._lock:
            asset = self.assets.get(asset_id)
            if asset is None:
                raise UnknownAsset(asset_id)
            return asset.total_supply
