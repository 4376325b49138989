"""
Relayer registry.

Governance-controlled set of relayer identities together with the quorum
threshold. Registry size and threshold are updated in one locked step so
the combined invariant ``1 <= M <= enabled_count`` (or the unset state
``M == 0``) holds after every call.
"""

import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from ...errors import (
    AlreadyRegistered,
    BadOrigin,
    InvalidQuorum,
    NotRegistered,
    ValidationError,
)
from ...logging import get_logger
from ..bridge_types import QuorumConfig, RelayerIdentity

logger = get_logger(__name__)


class RelayerRegistry:
    """Authorized attestor identities and the quorum threshold."""

    def __init__(self, governance_account: str, store=None):
        self.governance_account = governance_account
        self.relayers: Dict[str, RelayerIdentity] = {}
        self.threshold = 0
        self.store = store
        self._removal_listeners: List[Callable[[str], None]] = []
        self._lock = threading.RLock()

    def _ensure_governance(self, caller: str) -> None:
        if caller != self.governance_account:
            logger.warning(
                f"Rejected privileged registry call from {caller}",
                extra={"caller": caller},
            )
            raise BadOrigin(caller)

    @staticmethod
    def _check_relayer_id(relayer_id: str) -> None:
        if not isinstance(relayer_id, str) or not relayer_id.strip():
            raise ValidationError(
                "Relayer id must be a non-empty string",
                field="relayer_id",
                value=relayer_id,
                expected="non-empty string",
            )

    def _enabled_count(self) -> int:
        return sum(1 for relayer in self.relayers.values() if relayer.enabled)

    @staticmethod
    def _validate_threshold(threshold: int, enabled_count: int) -> None:
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise InvalidQuorum(
                f"Quorum threshold must be an integer, got {threshold!r}",
                threshold=threshold,
                enabled_count=enabled_count,
            )
        if threshold < 1 or threshold > enabled_count:
            raise InvalidQuorum(
                f"Quorum threshold {threshold} not in 1..{enabled_count}",
                threshold=threshold,
                enabled_count=enabled_count,
            )

    def add_relayer(self, caller: str, relayer_id: str) -> RelayerIdentity:
        """Register a relayer, or re-enable a previously disabled one."""
        self._ensure_governance(caller)
        self._check_relayer_id(relayer_id)

        with self._lock:
            existing = self.relayers.get(relayer_id)
            if existing is not None and existing.enabled:
                raise AlreadyRegistered(relayer_id)

            if existing is None:
                identity = RelayerIdentity(account_id=relayer_id)
            else:
                identity = RelayerIdentity(
                    account_id=relayer_id,
                    enabled=True,
                    registered_at=existing.registered_at,
                )

            if self.store is not None:
                self.store.save_relayer(identity)
            self.relayers[relayer_id] = identity

        logger.info(
            f"Relayer {relayer_id} registered",
            extra={"relayer_id": relayer_id, "enabled_count": self.enabled_count()},
        )
        return identity

    def remove_relayer(
        self, caller: str, relayer_id: str, new_threshold: Optional[int] = None
    ) -> RelayerIdentity:
        """Disable a relayer; its record is kept for audit.

        If the remaining enabled relayers could no longer reach the current
        threshold, the call fails with InvalidQuorum unless ``new_threshold``
        lowers it in the same step.
        """
        self._ensure_governance(caller)

        with self._lock:
            existing = self.relayers.get(relayer_id)
            if existing is None or not existing.enabled:
                raise NotRegistered(relayer_id)

            remaining = self._enabled_count() - 1
            threshold = self.threshold
            if new_threshold is not None:
                self._validate_threshold(new_threshold, remaining)
                threshold = new_threshold
            elif threshold > remaining:
                raise InvalidQuorum(
                    f"Removing {relayer_id} leaves {remaining} relayers, "
                    f"below threshold {threshold}",
                    threshold=threshold,
                    enabled_count=remaining,
                )

            identity = RelayerIdentity(
                account_id=relayer_id,
                enabled=False,
                registered_at=existing.registered_at,
                disabled_at=time.time(),
            )

            if self.store is not None:
                with self.store.transaction():
                    self.store.save_relayer(identity)
                    self.store.save_threshold(threshold)
            self.relayers[relayer_id] = identity
            self.threshold = threshold

            listeners = list(self._removal_listeners)

        for listener in listeners:
            listener(relayer_id)

        logger.info(
            f"Relayer {relayer_id} disabled",
            extra={"relayer_id": relayer_id, "threshold": threshold},
        )
        return identity

    def set_quorum(self, caller: str, threshold: int) -> QuorumConfig:
        """Set the number of distinct votes required to settle an event."""
        self._ensure_governance(caller)

        with self._lock:
            self._validate_threshold(threshold, self._enabled_count())
            if self.store is not None:
                self.store.save_threshold(threshold)
            self.threshold = threshold
            config = QuorumConfig(relayer_count=self._enabled_count(), threshold=threshold)

        logger.info(f"Quorum threshold set to {threshold}", extra=config.to_dict())
        return config

    def is_authorized(self, relayer_id: str) -> bool:
        """True only for registered, enabled relayers."""
        with self._lock:
            relayer = self.relayers.get(relayer_id)
            return relayer is not None and relayer.enabled

    def enabled_count(self) -> int:
        with self._lock:
            return self._enabled_count()

    def quorum(self) -> QuorumConfig:
        """Snapshot of the current quorum configuration."""
        with self._lock:
            return QuorumConfig(relayer_count=self._enabled_count(), threshold=self.threshold)

    def get_relayer(self, relayer_id: str) -> Optional[RelayerIdentity]:
        with self._lock:
            return self.relayers.get(relayer_id)

    def enabled_relayers(self) -> List[str]:
        with self._lock:
            return sorted(r.account_id for r in self.relayers.values() if r.enabled)

    def on_relayer_removed(self, listener: Callable[[str], None]) -> None:
        """Register a callback run after a relayer is disabled."""
        with self._lock:
            self._removal_listeners.append(listener)

    def restore(self, relayers: Iterable[RelayerIdentity], threshold: int) -> None:
        """Load persisted state without re-validating governance."""
        with self._lock:
            self.relayers = {relayer.account_id: relayer for relayer in relayers}
            self.threshold = threshold
            if not self.quorum().is_valid():
                raise InvalidQuorum(
                    "Persisted quorum threshold is not reachable",
                    threshold=threshold,
                    enabled_count=self._enabled_count(),
                )
