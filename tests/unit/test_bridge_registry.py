"""
Tests for the relayer registry.

This module tests:
- Governance-gated relayer management
- Quorum threshold validation
- Atomic removal with threshold lowering
"""

import pytest

from quorumbridge.bridge.bridge_types import QuorumConfig
from quorumbridge.bridge.validators.registry import RelayerRegistry
from quorumbridge.errors import (
    AlreadyRegistered,
    BadOrigin,
    InvalidQuorum,
    NotRegistered,
    ValidationError,
)

GOV = "governance"


@pytest.fixture
def registry():
    registry = RelayerRegistry(GOV)
    for relayer_id in ("r1", "r2", "r3"):
        registry.add_relayer(GOV, relayer_id)
    return registry


class TestRelayerManagement:
    """Test adding and removing relayers."""

    def test_empty_registry(self):
        """Test a new registry has no relayers and no threshold."""
        registry = RelayerRegistry(GOV)

        assert registry.enabled_count() == 0
        assert registry.quorum() == QuorumConfig(relayer_count=0, threshold=0)
        assert not registry.quorum().is_configured

    def test_add_relayer(self, registry):
        """Test added relayers are enabled and authorized."""
        assert registry.enabled_count() == 3
        assert registry.is_authorized("r1")
        assert registry.get_relayer("r1").enabled is True
        assert registry.enabled_relayers() == ["r1", "r2", "r3"]

    def test_add_relayer_requires_governance(self):
        registry = RelayerRegistry(GOV)
        with pytest.raises(BadOrigin) as exc_info:
            registry.add_relayer("mallory", "r1")
        assert exc_info.value.caller == "mallory"
        assert registry.enabled_count() == 0

    def test_add_duplicate(self, registry):
        with pytest.raises(AlreadyRegistered):
            registry.add_relayer(GOV, "r1")

    def test_add_empty_id(self, registry):
        with pytest.raises(ValidationError):
            registry.add_relayer(GOV, "")

    def test_remove_relayer_keeps_history(self, registry):
        """Test removal disables the relayer without deleting it."""
        identity = registry.remove_relayer(GOV, "r3")

        assert identity.enabled is False
        assert identity.disabled_at is not None
        assert not registry.is_authorized("r3")
        assert registry.get_relayer("r3") is not None
        assert registry.enabled_count() == 2

    def test_remove_unknown(self, registry):
        with pytest.raises(NotRegistered):
            registry.remove_relayer(GOV, "r9")

    def test_remove_twice(self, registry):
        """Test removing an already disabled relayer fails."""
        registry.remove_relayer(GOV, "r3")
        with pytest.raises(NotRegistered):
            registry.remove_relayer(GOV, "r3")

    def test_remove_requires_governance(self, registry):
        with pytest.raises(BadOrigin):
            registry.remove_relayer("r1", "r2")
        assert registry.is_authorized("r2")

    def test_readd_disabled_relayer(self, registry):
        """Test re-adding a disabled relayer re-enables the same identity."""
        registered_at = registry.get_relayer("r3").registered_at
        registry.remove_relayer(GOV, "r3")

        identity = registry.add_relayer(GOV, "r3")

        assert identity.enabled is True
        assert identity.disabled_at is None
        assert identity.registered_at == registered_at

    def test_removal_listener(self, registry):
        removed = []
        registry.on_relayer_removed(removed.append)

        registry.remove_relayer(GOV, "r2")

        assert removed == ["r2"]


class TestQuorum:
    """Test the quorum threshold."""

    def test_set_quorum(self, registry):
        config = registry.set_quorum(GOV, 2)

        assert config == QuorumConfig(relayer_count=3, threshold=2)
        assert config.is_valid()
        assert registry.quorum().threshold == 2

    @pytest.mark.parametrize("threshold", [0, 4, -1])
    def test_set_quorum_out_of_range(self, registry, threshold):
        """Test thresholds outside 1..N are rejected and leave state unchanged."""
        registry.set_quorum(GOV, 2)
        with pytest.raises(InvalidQuorum):
            registry.set_quorum(GOV, threshold)
        assert registry.quorum().threshold == 2

    def test_set_quorum_requires_governance(self, registry):
        with pytest.raises(BadOrigin):
            registry.set_quorum("r1", 1)

    def test_set_quorum_on_empty_registry(self):
        with pytest.raises(InvalidQuorum):
            RelayerRegistry(GOV).set_quorum(GOV, 1)

    def test_removal_below_threshold_rejected(self, registry):
        """Test removing a relayer that would make M unreachable is rejected."""
        registry.set_quorum(GOV, 3)

        with pytest.raises(InvalidQuorum) as exc_info:
            registry.remove_relayer(GOV, "r1")

        assert exc_info.value.threshold == 3
        assert exc_info.value.enabled_count == 2
        assert registry.is_authorized("r1")
        assert registry.quorum() == QuorumConfig(relayer_count=3, threshold=3)

    def test_removal_with_lowered_threshold(self, registry):
        """Test the threshold can be lowered in the same call as the removal."""
        registry.set_quorum(GOV, 3)

        registry.remove_relayer(GOV, "r1", new_threshold=2)

        assert registry.quorum() == QuorumConfig(relayer_count=2, threshold=2)

    def test_removal_with_invalid_new_threshold(self, registry):
        registry.set_quorum(GOV, 3)
        with pytest.raises(InvalidQuorum):
            registry.remove_relayer(GOV, "r1", new_threshold=3)
        assert registry.is_authorized("r1")

    def test_removal_within_threshold(self, registry):
        registry.set_quorum(GOV, 2)
        registry.remove_relayer(GOV, "r1")
        assert registry.quorum() == QuorumConfig(relayer_count=2, threshold=2)

    def test_remove_last_relayer_with_threshold(self):
        """Test the last relayer cannot be removed while a threshold is set."""
        registry = RelayerRegistry(GOV)
        registry.add_relayer(GOV, "r1")
        registry.set_quorum(GOV, 1)

        with pytest.raises(InvalidQuorum):
            registry.remove_relayer(GOV, "r1")

    def test_remove_without_threshold(self):
        registry = RelayerRegistry(GOV)
        registry.add_relayer(GOV, "r1")
        registry.remove_relayer(GOV, "r1")
        assert registry.quorum() == QuorumConfig(relayer_count=0, threshold=0)

    def test_restore_rejects_unreachable_threshold(self):
        from quorumbridge.bridge.bridge_types import RelayerIdentity

        registry = RelayerRegistry(GOV)
        with pytest.raises(InvalidQuorum):
            registry.restore([RelayerIdentity("r1")], threshold=2)
