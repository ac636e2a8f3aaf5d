"""
Tests for executing sales and canceling listings.

Covers payment matching, conservation of value, custody after each
transition, and the terminal nature of sold and canceled items.
"""

import pytest

from nftmarket.ledger import (
    IncorrectPaymentError,
    InsufficientFundsError,
    InvalidAddressError,
    InvalidAmountError,
    ItemNotActiveError,
    ItemNotFoundError,
    NotSellerError,
    TokenContractMismatchError,
)
from nftmarket.models import ItemCanceled, ItemSold, ItemStatus
from nftmarket.registry import InMemoryTokenRegistry
from tests.factories import (
    BUYER,
    LEDGER_ADDRESS,
    LISTING_FEE,
    OTHER_CONTRACT,
    OWNER,
    PRICE,
    SELLER,
    STARTING_BALANCE,
    STRANGER,
    TOKEN_CONTRACT,
    call,
    mint_approved,
)


# ==================== Sales ====================


class TestExecuteSale:
    """Tests for a successful purchase."""

    @pytest.mark.asyncio
    async def test_sale_scenario(self, ledger, registry, balances, listed_item):
        """Test buying item 1 with exactly 1 ether."""
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        assert balances.balance_of(SELLER) == STARTING_BALANCE - LISTING_FEE + PRICE
        assert balances.balance_of(BUYER) == STARTING_BALANCE - PRICE
        assert await registry.owner_of(7) == BUYER
        assert await ledger.fetch_active_items() == []

    @pytest.mark.asyncio
    async def test_sold_record(self, ledger, listed_item):
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        item = await ledger.get_market_item(listed_item)
        assert item.sold is True
        assert item.canceled is False
        assert item.owner == BUYER
        assert item.seller == SELLER
        assert item.status == ItemStatus.SOLD

    @pytest.mark.asyncio
    async def test_value_is_conserved(self, ledger, balances, listed_item):
        """Test that the seller receives exactly what the buyer pays."""
        supply_before = balances.total_supply()
        seller_before = balances.balance_of(SELLER)
        buyer_before = balances.balance_of(BUYER)
        ledger_before = balances.balance_of(LEDGER_ADDRESS)

        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        assert balances.balance_of(SELLER) - seller_before == PRICE
        assert buyer_before - balances.balance_of(BUYER) == PRICE
        assert balances.balance_of(LEDGER_ADDRESS) == ledger_before
        assert balances.total_supply() == supply_before
        assert (await ledger.get_fee_account()).balance == LISTING_FEE

    @pytest.mark.asyncio
    async def test_sale_is_logged(self, ledger, listed_item):
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        event = (await ledger.events())[-1]
        assert isinstance(event, ItemSold)
        assert event.buyer == BUYER
        assert event.seller == SELLER
        assert event.price == PRICE
        assert event.sequence == 2

    @pytest.mark.asyncio
    async def test_seller_may_buy_back(self, ledger, registry, balances, listed_item):
        await ledger.execute_sale(call(SELLER, PRICE), TOKEN_CONTRACT, listed_item)

        assert await registry.owner_of(7) == SELLER
        assert balances.balance_of(SELLER) == STARTING_BALANCE - LISTING_FEE


class TestExecuteSaleRejected:
    """Tests for rejected purchases."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attached", [900_000_000_000_000_000, PRICE + 1, 0])
    async def test_wrong_payment(self, ledger, registry, balances, listed_item, attached):
        """Test that underpayment and overpayment both fail without effect."""
        with pytest.raises(IncorrectPaymentError) as exc_info:
            await ledger.execute_sale(call(BUYER, attached), TOKEN_CONTRACT, listed_item)

        assert exc_info.value.required == PRICE
        item = await ledger.get_market_item(listed_item)
        assert item.is_active is True
        assert item.sold is False
        assert balances.balance_of(BUYER) == STARTING_BALANCE
        assert await registry.owner_of(7) == LEDGER_ADDRESS

    @pytest.mark.asyncio
    async def test_unknown_item(self, ledger):
        with pytest.raises(ItemNotFoundError):
            await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 99)

    @pytest.mark.asyncio
    async def test_wrong_token_contract(self, ledger, listed_item):
        ledger.register_token_contract(InMemoryTokenRegistry(OTHER_CONTRACT))

        with pytest.raises(TokenContractMismatchError):
            await ledger.execute_sale(call(BUYER, PRICE), OTHER_CONTRACT, listed_item)

    @pytest.mark.asyncio
    async def test_buyer_without_funds(self, ledger, listed_item, registry):
        poor = "0x" + "9" * 40

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.execute_sale(call(poor, PRICE), TOKEN_CONTRACT, listed_item)

        assert exc_info.value.category == "validation"
        assert (await ledger.get_market_item(listed_item)).is_active is True
        assert await registry.owner_of(7) == LEDGER_ADDRESS

    @pytest.mark.asyncio
    async def test_ledger_identity_cannot_buy(self, ledger, registry, balances):
        """Test that a purchase made under the ledger's address cannot spend escrowed fees."""
        [token_id] = await mint_approved(registry, SELLER)
        market_item_id = await ledger.create_listing(
            call(SELLER, LISTING_FEE), TOKEN_CONTRACT, token_id, LISTING_FEE
        )

        with pytest.raises(InvalidAddressError):
            await ledger.execute_sale(call(LEDGER_ADDRESS, LISTING_FEE), TOKEN_CONTRACT, market_item_id)

        assert (await ledger.get_market_item(market_item_id)).is_active is True
        assert balances.balance_of(LEDGER_ADDRESS) == LISTING_FEE
        assert balances.balance_of(SELLER) == STARTING_BALANCE - LISTING_FEE
        assert (await ledger.get_fee_account()).balance == LISTING_FEE
        assert await ledger.withdraw_fees(call(OWNER)) == LISTING_FEE


# ==================== Cancellation ====================


class TestCancelListing:
    """Tests for canceling a listing."""

    @pytest.mark.asyncio
    async def test_seller_gets_token_back(self, ledger, registry, listed_item):
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

        item = await ledger.get_market_item(listed_item)
        assert item.canceled is True
        assert item.sold is False
        assert item.status == ItemStatus.CANCELED
        assert await registry.owner_of(7) == SELLER
        assert await ledger.fetch_active_items() == []

    @pytest.mark.asyncio
    async def test_fee_is_not_refunded(self, ledger, balances, listed_item):
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

        assert balances.balance_of(SELLER) == STARTING_BALANCE - LISTING_FEE
        assert (await ledger.get_fee_account()).balance == LISTING_FEE

    @pytest.mark.asyncio
    async def test_cancel_is_logged(self, ledger, listed_item):
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

        event = (await ledger.events())[-1]
        assert isinstance(event, ItemCanceled)
        assert event.seller == SELLER

    @pytest.mark.asyncio
    async def test_only_seller_can_cancel(self, ledger, registry, listed_item):
        with pytest.raises(NotSellerError):
            await ledger.cancel_listing(call(STRANGER), TOKEN_CONTRACT, listed_item)

        assert (await ledger.get_market_item(listed_item)).is_active is True
        assert await registry.owner_of(7) == LEDGER_ADDRESS

    @pytest.mark.asyncio
    async def test_ledger_identity_cannot_cancel(self, ledger, registry, listed_item):
        with pytest.raises(InvalidAddressError):
            await ledger.cancel_listing(call(LEDGER_ADDRESS), TOKEN_CONTRACT, listed_item)

        assert (await ledger.get_market_item(listed_item)).is_active is True
        assert await registry.owner_of(7) == LEDGER_ADDRESS

    @pytest.mark.asyncio
    async def test_cancel_rejects_attached_value(self, ledger, listed_item):
        with pytest.raises(InvalidAmountError):
            await ledger.cancel_listing(call(SELLER, 1), TOKEN_CONTRACT, listed_item)

    @pytest.mark.asyncio
    async def test_relist_after_cancel_gets_new_id(self, ledger, registry, listed_item):
        """Test that a returned token is listed again under a new item id."""
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)
        await registry.approve(SELLER, LEDGER_ADDRESS, 7)

        relisted = await ledger.create_listing(call(SELLER, LISTING_FEE), TOKEN_CONTRACT, 7, 2 * PRICE)

        assert relisted == listed_item + 1
        assert (await ledger.get_market_item(listed_item)).canceled is True
        assert (await ledger.find_active_listing(TOKEN_CONTRACT, 7)).market_item_id == relisted


# ==================== Terminal states ====================


class TestTerminalStates:
    """Tests that sold and canceled items never change again."""

    @pytest.mark.asyncio
    async def test_cancel_after_sale_fails(self, ledger, registry, listed_item):
        """Test the seller cannot cancel an item that was already sold."""
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)
        before = await ledger.get_market_item(listed_item)

        with pytest.raises(ItemNotActiveError):
            await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

        assert await ledger.get_market_item(listed_item) == before
        assert await registry.owner_of(7) == BUYER

    @pytest.mark.asyncio
    async def test_second_sale_fails(self, ledger, balances, listed_item):
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)
        before = await ledger.get_market_item(listed_item)

        with pytest.raises(ItemNotActiveError):
            await ledger.execute_sale(call(STRANGER, PRICE), TOKEN_CONTRACT, listed_item)

        assert await ledger.get_market_item(listed_item) == before
        assert balances.balance_of(STRANGER) == STARTING_BALANCE

    @pytest.mark.asyncio
    async def test_sale_after_cancel_fails(self, ledger, listed_item):
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)
        before = await ledger.get_market_item(listed_item)

        with pytest.raises(ItemNotActiveError) as exc_info:
            await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, listed_item)

        assert exc_info.value.category == "state"
        assert await ledger.get_market_item(listed_item) == before

    @pytest.mark.asyncio
    async def test_double_cancel_fails(self, ledger, listed_item):
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

        with pytest.raises(ItemNotActiveError):
            await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, listed_item)

    @pytest.mark.asyncio
    async def test_no_item_is_both_sold_and_canceled(self, ledger, registry):
        """Test mutual exclusion of the terminal flags across a mixed history."""
        tokens = await mint_approved(registry, SELLER, count=4)
        for token_id in tokens:
            await ledger.create_listing(call(SELLER, LISTING_FEE), TOKEN_CONTRACT, token_id, PRICE)
        await ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 1)
        await ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, 2)
        await ledger.execute_sale(call(STRANGER, PRICE), TOKEN_CONTRACT, 3)
        for attempt in (
            ledger.cancel_listing(call(SELLER), TOKEN_CONTRACT, 1),
            ledger.execute_sale(call(BUYER, PRICE), TOKEN_CONTRACT, 2),
        ):
            with pytest.raises(ItemNotActiveError):
                await attempt

        snapshot = await ledger.export_state()
        assert all(not (item.sold and item.canceled) for item in snapshot.items)
        assert [item.status for item in snapshot.items] == [
            ItemStatus.SOLD,
            ItemStatus.CANCELED,
            ItemStatus.SOLD,
            ItemStatus.ACTIVE,
        ]
