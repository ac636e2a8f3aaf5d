"""
Tests for ledger queries and state export.
"""

import pytest

from nftmarket.ledger import (
    ActivityRole,
    InvalidAddressError,
    ItemNotFoundError,
    MarketplaceLedger,
    account_activity,
    item_history,
    sales_volume,
)
from nftmarket.models import ItemListed, ItemSold, LedgerSnapshot
from tests.factories import (
    BUYER,
    LEDGER_ADDRESS,
    LISTING_FEE,
    OTHER_CONTRACT,
    OWNER,
    PRICE,
    SELLER,
    STRANGER,
    TOKEN_CONTRACT,
    call,
    mint_approved,
)


async def list_many(ledger, registry, seller, count, price=PRICE):
    ids = []
    for token_id in await mint_approved(registry, seller, count=count):
        ids.append(await ledger.create_listing(call(seller, LISTING_FEE), TOKEN_CONTRACT, token_id, price))
    return ids


# ==================== Active items ====================


class TestFetchActiveItems:
    """Tests for the active listing views."""

    @pytest.mark.asyncio
    async def test_empty_ledger(self, ledger):
        assert await ledger.fetch_active_items() == []
        assert await ledger.fetch_available_items() == []
        assert ledger.item_count == 0

    @pytest.mark.asyncio
    async def test_ascending_id_order_after_removals(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 2)
        await list_many(ledger, registry, STRANGER, 2)
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, 2)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 3)

        active = await ledger.fetch_active_items()

        assert [item.market_item_id for item in active] == [1, 4]
        assert all(item.is_active for item in active)

    @pytest.mark.asyncio
    async def test_available_matches_active(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 3)
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, 1)

        assert await ledger.fetch_available_items() == await ledger.fetch_active_items()


# ==================== Per-account views ====================


class TestAccountViews:
    """Tests for seller and owner queries."""

    @pytest.mark.asyncio
    async def test_items_by_seller_are_active_only(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 3)
        await list_many(ledger, registry, STRANGER, 1)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 2)

        by_seller = await ledger.fetch_items_by_seller(SELLER)

        assert [item.market_item_id for item in by_seller] == [1, 3]
        assert [item.market_item_id for item in await ledger.fetch_items_by_seller(STRANGER)] == [4]

    @pytest.mark.asyncio
    async def test_items_by_owner_are_purchases(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 3)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 3)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 1)
        await ledger.execute_sale(call(STRANGER, PRICE), TOKEN_CONTRACT, 2)

        bought = await ledger.fetch_items_by_owner(BUYER)

        assert [item.market_item_id for item in bought] == [1, 3]
        assert all(item.owner == BUYER and item.sold for item in bought)

    @pytest.mark.asyncio
    async def test_unknown_account_has_nothing(self, ledger, listed_item):
        assert await ledger.fetch_items_by_seller(OWNER) == []
        assert await ledger.fetch_items_by_owner(OWNER) == []

    @pytest.mark.asyncio
    async def test_lower_case_address_is_accepted(self, ledger, listed_item):
        assert len(await ledger.fetch_items_by_seller(SELLER.lower())) == 1

    @pytest.mark.asyncio
    async def test_malformed_address_rejected(self, ledger):
        with pytest.raises(InvalidAddressError):
            await ledger.fetch_items_by_seller("not-an-address")


# ==================== Single items ====================


class TestItemLookup:
    """Tests for looking up individual items."""

    @pytest.mark.asyncio
    async def test_get_market_item(self, ledger, listed_item):
        item = await ledger.get_market_item(listed_item)

        assert item.token_id == 7
        assert item.price == PRICE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("market_item_id", [0, 2, 999])
    async def test_missing_item(self, ledger, listed_item, market_item_id):
        with pytest.raises(ItemNotFoundError):
            await ledger.get_market_item(market_item_id)

    @pytest.mark.asyncio
    async def test_find_active_listing(self, ledger, listed_item):
        item = await ledger.find_active_listing(TOKEN_CONTRACT, 7)

        assert item.market_item_id == listed_item

    @pytest.mark.asyncio
    async def test_find_listing_gone_after_sale(self, ledger, listed_item):
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        assert await ledger.find_active_listing(TOKEN_CONTRACT, 7) is None

    @pytest.mark.asyncio
    async def test_find_listing_of_unlisted_token(self, ledger, listed_item):
        assert await ledger.find_active_listing(TOKEN_CONTRACT, 1) is None
        assert await ledger.find_active_listing(OTHER_CONTRACT, 7) is None


# ==================== Event log ====================


class TestEvents:
    """Tests for reading the transition log."""

    @pytest.mark.asyncio
    async def test_events_in_commit_order(self, ledger, listed_item):
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        events = await ledger.events()

        assert [type(e) for e in events] == [ItemListed, ItemSold]
        assert [e.sequence for e in events] == [1, 2]

    @pytest.mark.asyncio
    async def test_events_since(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 3)

        newer = await ledger.events(since=1)

        assert [e.sequence for e in newer] == [2, 3]
        assert await ledger.events(since=3) == []

    @pytest.mark.asyncio
    async def test_returned_log_is_a_copy(self, ledger, listed_item):
        events = await ledger.events()
        events.clear()

        assert len(await ledger.events()) == 1


# ==================== Export and restore ====================


class TestExportRestore:
    """Tests for snapshotting and rebuilding a ledger."""

    @pytest.mark.asyncio
    async def test_snapshot_contents(self, ledger, registry):
        await list_many(ledger, registry, SELLER, 3)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 2)

        snapshot = await ledger.export_state()

        assert snapshot.address == LEDGER_ADDRESS
        assert snapshot.owner == OWNER
        assert snapshot.next_item_id == 4
        assert snapshot.fee_account.balance == 3 * LISTING_FEE
        assert snapshot.token_contracts == [TOKEN_CONTRACT]
        assert [item.sold for item in snapshot.items] == [False, True, False]

    @pytest.mark.asyncio
    async def test_restore_rebuilds_indexes(self, ledger, registry, balances):
        """Test that a restored ledger answers queries and continues numbering."""
        await list_many(ledger, registry, SELLER, 3)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 2)
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, 3)
        snapshot = LedgerSnapshot.model_validate_json((await ledger.export_state()).model_dump_json())

        restored = MarketplaceLedger.restore(snapshot, balances=balances, registries=[registry])

        assert [i.market_item_id for i in await restored.fetch_active_items()] == [1]
        assert [i.market_item_id for i in await restored.fetch_items_by_seller(SELLER)] == [1]
        assert [i.market_item_id for i in await restored.fetch_items_by_owner(BUYER)] == [2]
        assert (await restored.find_active_listing(TOKEN_CONTRACT, 1)).market_item_id == 1
        assert await restored.get_fee_account() == await ledger.get_fee_account()

        [token_id] = await mint_approved(registry, SELLER)
        assert await restored.create_listing(call(SELLER, LISTING_FEE), TOKEN_CONTRACT, token_id, PRICE) == 4

    @pytest.mark.asyncio
    async def test_restored_ledger_can_settle_escrowed_item(self, ledger, registry, balances, listed_item):
        restored = MarketplaceLedger.restore(
            await ledger.export_state(), balances=balances, registries=[registry]
        )

        await restored.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        assert await registry.owner_of(7) == BUYER

    @pytest.mark.asyncio
    async def test_restore_without_registry(self, ledger, listed_item):
        restored = MarketplaceLedger.restore(await ledger.export_state())

        assert restored.token_contracts == []
        assert len(await restored.fetch_active_items()) == 1

    @pytest.mark.asyncio
    async def test_restore_keeps_history(self, ledger, registry, balances):
        """Test that history read-models answer the same after a restore."""
        await list_many(ledger, registry, SELLER, 2)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 1)
        snapshot = LedgerSnapshot.model_validate_json((await ledger.export_state()).model_dump_json())

        restored = MarketplaceLedger.restore(snapshot, balances=balances, registries=[registry])

        events = await restored.events()
        assert events == await ledger.events()
        assert [type(e) for e in item_history(events, 1)] == [ItemListed, ItemSold]
        assert [a.role for a in account_activity(events, BUYER)] == [ActivityRole.BUYER]
        assert sales_volume(events).total_value == PRICE

        await restored.cancel_listing(call(SELLER), TOKEN_CONTRACT, 2)
        assert [e.sequence for e in await restored.events()] == [1, 2, 3, 4]
