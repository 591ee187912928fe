"""End-to-end vault scenarios on simulated strategies.

Covers deposit/mint/withdraw/redeem rounding, yield accrual, the withdrawal
queue, allocation caps and the conservation property.
"""

import pytest

from conftest import ALICE, BOB, USDC, fund
from msvault.core.errors import (
    ExternalFailure,
    InsufficientAllowance,
    InsufficientLiquidity,
    InsufficientShares,
    InvalidAddress,
    NoSharesOutstanding,
    RequestAlreadyCompleted,
    RequestNotFound,
    TotalAllocationInvalid,
    ZeroAmount,
)
from msvault.services.vault import events as ev
from msvault.services.vault.simulation import SimulatedConvertibleStrategy


class TestDeposits:

    def test_first_deposit(self, vault, asset):
        fund(asset, ALICE, 1000 * USDC)
        shares = vault.deposit(1000 * USDC, ALICE)
        assert shares == 1000 * USDC
        assert vault.total_supply == 1000 * USDC
        assert vault.total_value() == 1000 * USDC
        assert asset.balance_of(ALICE) == 0

    def test_deposit_on_behalf_of_receiver(self, vault, asset):
        fund(asset, BOB, 10 * USDC)
        vault.deposit(10 * USDC, ALICE, caller=BOB)
        assert vault.balance_of(ALICE) == 10 * USDC
        assert vault.balance_of(BOB) == 0
        assert asset.balance_of(BOB) == 0

    def test_deposit_without_asset_allowance(self, vault, asset):
        asset.mint(ALICE, 10 * USDC)
        with pytest.raises(ExternalFailure):
            vault.deposit(10 * USDC, ALICE)
        assert vault.total_supply == 0

    def test_zero_and_empty_inputs(self, vault):
        with pytest.raises(ZeroAmount):
            vault.deposit(0, ALICE)
        with pytest.raises(InvalidAddress):
            vault.deposit(1, "")

    def test_deposit_rounds_shares_down(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(1000)  # pool worth 1060, 1000 shares
        fund(asset, BOB, 100 * USDC)
        shares = invested_vault.deposit(100 * USDC, BOB)
        # 100 * 1000 / 1060 = 94.339622...
        assert shares == 94_339_622

    def test_mint_rounds_assets_up(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(1000)
        fund(asset, BOB, 200 * USDC)
        assets = invested_vault.mint(100 * USDC, BOB)
        # 100 * 1060 / 1000 = 106 exactly; one more share forces a remainder
        assert assets == 106 * USDC
        assert invested_vault.mint(1, BOB) == 2

    def test_dust_deposit_that_mints_nothing(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(10000)  # share price 1.6
        fund(asset, BOB, 1)
        with pytest.raises(ZeroAmount):
            invested_vault.deposit(1, BOB)
        assert asset.balance_of(BOB) == 1


class TestYield:

    def test_yield_raises_total_value(self, invested_vault, strategy_a):
        strategy_a.simulate_yield(1000)
        assert invested_vault.total_value() == 1060 * USDC
        assert invested_vault.convert_to_assets(1000 * USDC) == 1060 * USDC

    def test_yield_reported_on_next_operation(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(1000)
        fund(asset, BOB, 1 * USDC)
        invested_vault.deposit(1 * USDC, BOB)

        [change] = invested_vault.events.of_type(ev.ValuationChanged)
        assert change.previous_total == 1000 * USDC
        assert change.new_total == 1060 * USDC
        assert change.delta == 60 * USDC
        assert invested_vault.cached_total_value == 1061 * USDC

    def test_sole_holder_redeems_everything(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(1000)

        outcome = invested_vault.redeem(1000 * USDC, ALICE, ALICE)
        assert outcome.queued
        assert outcome.assets == 1060 * USDC
        assert invested_vault.total_supply == 0

        invested_vault.rebalance()
        invested_vault.complete_withdrawal(ALICE, 0)
        assert asset.balance_of(ALICE) == 1060 * USDC
        assert invested_vault.total_value() == 0

    def test_loss_lowers_share_price(self, invested_vault, strategy_b):
        strategy_b.simulate_loss(5000)
        assert invested_vault.total_value() == 800 * USDC
        assert invested_vault.max_withdraw(ALICE) == 800 * USDC


class TestWithdrawals:

    def test_instant_withdraw_from_idle(self, vault, asset):
        fund(asset, ALICE, 100 * USDC)
        vault.deposit(100 * USDC, ALICE)
        outcome = vault.withdraw(40 * USDC, BOB, ALICE)
        assert not outcome.queued
        assert outcome.shares == 40 * USDC
        assert asset.balance_of(BOB) == 40 * USDC
        assert vault.balance_of(ALICE) == 60 * USDC

    def test_withdraw_rounds_shares_up(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(1000)
        invested_vault.update_allocation(0, 5000)
        invested_vault.rebalance()  # leaves about 106 idle
        outcome = invested_vault.withdraw(1, ALICE, ALICE)
        assert outcome.shares == 1
        assert not outcome.queued

    def test_queue_then_complete(self, invested_vault, asset):
        outcome = invested_vault.withdraw(500 * USDC, ALICE, ALICE)

        assert outcome.queued
        request = outcome.request
        assert request.request_id == 0
        assert request.assets_owed == 500 * USDC
        assert invested_vault.total_queued_assets == 500 * USDC
        assert invested_vault.balance_of(ALICE) == 500 * USDC
        assert invested_vault.total_supply == 500 * USDC

        with pytest.raises(InsufficientLiquidity):
            invested_vault.complete_withdrawal(ALICE, 0)

        invested_vault.rebalance()
        completed = invested_vault.complete_withdrawal(ALICE, 0)
        assert completed.completed
        assert asset.balance_of(ALICE) == 500 * USDC
        assert invested_vault.total_queued_assets == 0

        with pytest.raises(RequestAlreadyCompleted):
            invested_vault.complete_withdrawal(ALICE, 0)

    def test_queued_claim_is_not_diluted_by_later_yield(self, invested_vault, strategy_a):
        invested_vault.withdraw(500 * USDC, ALICE, ALICE)
        strategy_a.simulate_yield(1000)  # +60
        assert invested_vault.total_queued_assets == 500 * USDC
        assert invested_vault.net_value() == 560 * USDC
        assert invested_vault.max_withdraw(ALICE) == 560 * USDC

    def test_queued_request_pays_receiver(self, invested_vault, asset):
        outcome = invested_vault.withdraw(100 * USDC, BOB, ALICE)
        invested_vault.rebalance()
        invested_vault.complete_withdrawal(ALICE, outcome.request.request_id)
        assert asset.balance_of(BOB) == 100 * USDC

    def test_idle_reserved_for_queue_is_not_paid_to_others(self, vault, asset):
        fund(asset, ALICE, 100 * USDC)
        fund(asset, BOB, 100 * USDC)
        vault.deposit(100 * USDC, ALICE)
        vault.deposit(100 * USDC, BOB)
        strategy = SimulatedConvertibleStrategy(asset, "s")
        vault.add_strategy(strategy, 6000)
        vault.rebalance()  # 120 invested, 80 idle

        first = vault.withdraw(90 * USDC, ALICE, ALICE)
        assert first.queued
        second = vault.withdraw(10 * USDC, BOB, BOB)
        assert second.queued  # 80 idle all reserved for alice's claim

    def test_unknown_request(self, vault):
        with pytest.raises(RequestNotFound):
            vault.complete_withdrawal(ALICE, 3)

    def test_pending_withdrawals_listing(self, invested_vault):
        invested_vault.withdraw(10 * USDC, ALICE, ALICE)
        invested_vault.withdraw(20 * USDC, ALICE, ALICE)
        requests = invested_vault.pending_withdrawals(ALICE)
        assert [r.assets_owed for r in requests] == [10 * USDC, 20 * USDC]
        assert invested_vault.pending_withdrawals(BOB) == []

    def test_withdraw_more_than_owned(self, vault, asset):
        fund(asset, ALICE, 10 * USDC)
        vault.deposit(10 * USDC, ALICE)
        with pytest.raises(InsufficientShares):
            vault.withdraw(11 * USDC, ALICE, ALICE)
        assert vault.balance_of(ALICE) == 10 * USDC

    def test_withdraw_with_no_shares(self, vault):
        with pytest.raises(NoSharesOutstanding):
            vault.withdraw(1, ALICE, ALICE)

    def test_third_party_needs_share_allowance(self, vault, asset):
        fund(asset, ALICE, 10 * USDC)
        vault.deposit(10 * USDC, ALICE)
        with pytest.raises(InsufficientAllowance):
            vault.redeem(5 * USDC, BOB, ALICE, caller=BOB)

        vault.approve(ALICE, BOB, 5 * USDC)
        outcome = vault.redeem(5 * USDC, BOB, ALICE, caller=BOB)
        assert outcome.assets == 5 * USDC
        assert vault.allowance(ALICE, BOB) == 0

    def test_round_trip_never_profits(self, invested_vault, asset, strategy_a):
        strategy_a.simulate_yield(333)
        invested_vault.update_allocation(0, 0)
        invested_vault.update_allocation(1, 0)
        invested_vault.rebalance()

        fund(asset, BOB, 777_777_777)
        shares = invested_vault.deposit(777_777_777, BOB)
        outcome = invested_vault.redeem(shares, BOB, BOB)
        assert not outcome.queued
        assert asset.balance_of(BOB) <= 777_777_777


class TestAllocationCaps:

    def test_third_strategy_over_aggregate_cap(self, invested_vault, asset):
        extra = SimulatedConvertibleStrategy(asset, "strategy-c")
        with pytest.raises(TotalAllocationInvalid):
            invested_vault.add_strategy(extra, 1000)
        assert len(invested_vault.list_strategies()) == 2
        assert invested_vault.events.of_type(ev.StrategyAdded)[-1].index == 1

    def test_remove_and_update_events(self, vault, strategy_a):
        vault.add_strategy(strategy_a, 1000)
        vault.update_allocation(0, 2000)
        vault.remove_strategy(0)
        vault.remove_strategy(0)

        names = [e.name for e in vault.events.history]
        assert names == ["StrategyAdded", "StrategyUpdated", "StrategyRemoved"]


class TestConservation:

    def test_holder_claims_match_total_value(self, invested_vault, asset, strategy_a, strategy_b):
        holders = {ALICE: 1000 * USDC}
        for i, amount in enumerate([333_333_333, 7, 77_000_001, 5_000_000]):
            account = f"holder-{i}"
            fund(asset, account, amount)
            invested_vault.deposit(amount, account)
            strategy_a.simulate_yield(17)
            strategy_b.simulate_loss(3)
            holders[account] = amount

        total = invested_vault.total_value()
        claims = sum(invested_vault.convert_to_assets(invested_vault.balance_of(h)) for h in holders)
        assert claims <= total
        assert total - claims <= len(holders)

    def test_claims_match_total_value_across_withdrawals(self, vault, asset, strategy_a):
        """Deposits, instant withdrawals and redemptions interleaved with yield and loss."""
        vault.add_strategy(strategy_a, 5000)
        fund(asset, ALICE, 1000 * USDC)
        vault.deposit(1000 * USDC, ALICE)
        vault.rebalance()
        holders = {ALICE}
        operations = 2

        def check():
            total = vault.total_value()
            claims = sum(vault.convert_to_assets(vault.balance_of(h)) for h in holders)
            assert vault.total_queued_assets == 0
            assert claims <= total
            assert total - claims <= operations

        def deposit(account, amount):
            fund(asset, account, amount)
            vault.deposit(amount, account)
            holders.add(account)

        steps = [
            lambda: deposit("holder-0", 333_333_333),
            lambda: strategy_a.simulate_yield(17),
            lambda: vault.withdraw(12_345_679, ALICE, ALICE),
            lambda: vault.redeem(vault.balance_of("holder-0") // 3, "holder-0", "holder-0"),
            lambda: strategy_a.simulate_loss(3),
            lambda: deposit("holder-1", 77_000_001),
            lambda: vault.withdraw(1, "holder-1", "holder-1"),
            lambda: vault.redeem(7, ALICE, ALICE),
            lambda: deposit("holder-2", 7),
            lambda: vault.redeem(vault.balance_of("holder-1"), "holder-1", "holder-1"),
        ]
        for step in steps:
            outcome = step()
            if outcome is not None and hasattr(outcome, "queued"):
                assert not outcome.queued
            operations += 1
            check()


def _empty_pool(vault, asset, strategy_a, strategy_b):
    pass


def _invested(vault, asset, strategy_a, strategy_b):
    vault.add_strategy(strategy_a, 5000)
    fund(asset, ALICE, 1000 * USDC)
    vault.deposit(1000 * USDC, ALICE)
    vault.rebalance()


def _after_yield(vault, asset, strategy_a, strategy_b):
    _invested(vault, asset, strategy_a, strategy_b)
    strategy_a.simulate_yield(333)


def _after_loss(vault, asset, strategy_a, strategy_b):
    _invested(vault, asset, strategy_a, strategy_b)
    strategy_a.simulate_loss(777)


def _with_pending_queue(vault, asset, strategy_a, strategy_b):
    vault.add_strategy(strategy_a, 6000)
    vault.add_strategy(strategy_b, 4000)
    fund(asset, ALICE, 1000 * USDC)
    vault.deposit(1000 * USDC, ALICE)
    vault.rebalance()
    strategy_a.simulate_yield(101)
    assert vault.withdraw(100 * USDC, ALICE, ALICE).queued


class TestRoundTrip:

    @pytest.mark.parametrize("prepare", [_empty_pool, _after_yield, _after_loss, _with_pending_queue])
    @pytest.mark.parametrize("amount", [3, 777_777_777])
    def test_deposit_then_redeem_never_profits(self, vault, asset, strategy_a, strategy_b, prepare, amount):
        prepare(vault, asset, strategy_a, strategy_b)
        fund(asset, BOB, amount)

        shares = vault.deposit(amount, BOB)
        outcome = vault.redeem(shares, BOB, BOB)

        assert outcome.assets <= amount
        assert asset.balance_of(BOB) + (outcome.assets if outcome.queued else 0) <= amount
