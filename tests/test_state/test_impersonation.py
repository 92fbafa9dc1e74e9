"""
Tests for the impersonation tracker.
"""

import pytest

from anvilkit.errors import InvalidAddressError, ZeroBalanceWarning
from anvilkit.state.impersonation import ImpersonationResult, ImpersonationTracker

from conftest import FUNDED_ADDRESS, UNFUNDED_ADDRESS, FakeChainClient


class TestImpersonationStart:
    """Tests for ImpersonationTracker.start()."""

    @pytest.mark.asyncio
    async def test_start_records_lowercase_address(self, chain_client: FakeChainClient) -> None:
        tracker = ImpersonationTracker("instance-1")

        result = await tracker.start(chain_client, FUNDED_ADDRESS)

        assert result.address == FUNDED_ADDRESS.lower()
        assert result.active is True
        assert result.balance == 10 ** 22
        assert result.warnings == []
        assert tracker.is_active(FUNDED_ADDRESS)
        assert tracker.active == [FUNDED_ADDRESS.lower()]
        assert ("anvil_impersonateAccount", [FUNDED_ADDRESS.lower()]) in chain_client.calls

    @pytest.mark.asyncio
    async def test_zero_balance_warns(self, chain_client: FakeChainClient) -> None:
        """A zero-balance address is impersonated, with a warning."""
        tracker = ImpersonationTracker()

        with pytest.warns(ZeroBalanceWarning):
            result = await tracker.start(chain_client, UNFUNDED_ADDRESS)

        assert result.active is True
        assert result.balance == 0
        assert any("zero balance" in w for w in result.warnings)
        assert tracker.is_active(UNFUNDED_ADDRESS)

    @pytest.mark.asyncio
    async def test_already_active_warns(self, chain_client: FakeChainClient) -> None:
        tracker = ImpersonationTracker()
        await tracker.start(chain_client, FUNDED_ADDRESS)

        result = await tracker.start(chain_client, FUNDED_ADDRESS.lower())

        assert any("Already impersonating" in w for w in result.warnings)
        assert tracker.active == [FUNDED_ADDRESS.lower()]

    @pytest.mark.asyncio
    async def test_invalid_address(self, chain_client: FakeChainClient) -> None:
        tracker = ImpersonationTracker()

        with pytest.raises(InvalidAddressError):
            await tracker.start(chain_client, "0x1234")

        assert chain_client.calls == []
        assert tracker.active == []

    @pytest.mark.asyncio
    async def test_bad_checksum_rejected(self, chain_client: FakeChainClient) -> None:
        # One letter of a checksummed address with its case flipped.
        bad = "0xf39fd6e51aad88F6F4ce6aB8827279cffFb92266"

        with pytest.raises(InvalidAddressError):
            await ImpersonationTracker().start(chain_client, bad)


class TestImpersonationStop:
    """Tests for ImpersonationTracker.stop()."""

    @pytest.mark.asyncio
    async def test_start_query_stop_leaves_empty(self, chain_client: FakeChainClient) -> None:
        tracker = ImpersonationTracker()
        await tracker.start(chain_client, FUNDED_ADDRESS)
        assert tracker.is_active(FUNDED_ADDRESS)

        result = await tracker.stop(chain_client, FUNDED_ADDRESS)

        assert result.active is False
        assert tracker.active == []
        assert ("anvil_stopImpersonatingAccount", [FUNDED_ADDRESS.lower()]) in chain_client.calls

    @pytest.mark.asyncio
    async def test_stop_never_impersonated_is_noop(self, chain_client: FakeChainClient) -> None:
        tracker = ImpersonationTracker()

        result = await tracker.stop(chain_client, FUNDED_ADDRESS)

        assert result.active is False
        assert tracker.active == []

    @pytest.mark.asyncio
    async def test_trackers_are_independent(self, chain_client: FakeChainClient) -> None:
        """The same address on two instances is tracked separately."""
        first = ImpersonationTracker("instance-1")
        second = ImpersonationTracker("instance-2")

        await first.start(chain_client, FUNDED_ADDRESS)
        await second.start(chain_client, FUNDED_ADDRESS)
        await first.stop(chain_client, FUNDED_ADDRESS)

        assert not first.is_active(FUNDED_ADDRESS)
        assert second.is_active(FUNDED_ADDRESS)

    def test_result_to_dict(self) -> None:
        result = ImpersonationResult(address=UNFUNDED_ADDRESS, active=True, balance=10 ** 30)

        assert result.to_dict()["balance"] == str(10 ** 30)
