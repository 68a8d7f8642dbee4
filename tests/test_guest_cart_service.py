# tests/test_guest_cart_service.py
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.domain.errors import CheckoutApiError
from app.repos.guest_cart_repo import GUEST_CART_CHANNEL, GuestCartRepo
from app.services.guest_cart_service import GuestCartService


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def repo(fake_redis):
    return GuestCartRepo(client=fake_redis, ttl=3600)


@pytest.fixture
def service(repo, clock):
    return GuestCartService("guest-1", repo=repo, clock=clock)


def test_adding_same_product_twice_upserts_quantity(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(7, 1, 3)

    cart = service.get_guest_cart(7)
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 5
    assert service.get_guest_cart_item_count(7) == 5


def test_carts_are_kept_per_store(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(8, 1, 1)
    service.add_to_guest_cart(8, 2, 4)

    assert [c.store_id for c in service.get_guest_carts()] == [7, 8]
    assert service.get_total_guest_cart_items() == 7


def test_add_rejects_non_positive_quantity(service):
    with pytest.raises(ValueError):
        service.add_to_guest_cart(7, 1, 0)


def test_cart_is_persisted_as_json_with_ttl(service, fake_redis):
    service.add_to_guest_cart(7, 1, 2)

    key = GuestCartRepo.key("guest-1")
    assert key == "guest_cart:guest-1"
    assert fake_redis.ttl[key] == 3600
    assert '"productId":1' in fake_redis.get(key)


def test_update_to_zero_removes_item_and_empty_cart(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(7, 2, 1)

    service.update_guest_cart_item(7, 1, 0)
    assert [i.product_id for i in service.get_guest_cart(7).items] == [2]

    assert service.remove_from_guest_cart(7, 2) is None
    assert service.get_guest_cart(7) is None


def test_update_sets_quantity(service):
    service.add_to_guest_cart(7, 1, 2)
    cart = service.update_guest_cart_item(7, 1, 9)
    assert cart.items[0].quantity == 9


def test_clear_store_cart_and_all_carts(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(8, 1, 2)

    service.clear_guest_cart(7)
    assert [c.store_id for c in service.get_guest_carts()] == [8]

    service.clear_all_guest_carts()
    assert service.get_guest_carts() == []


def test_expired_carts_are_dropped_on_read(service, clock):
    service.add_to_guest_cart(7, 1, 2)
    clock.now += timedelta(days=3)
    service.add_to_guest_cart(8, 1, 1)

    clock.now += timedelta(days=5)

    assert [c.store_id for c in service.get_guest_carts()] == [8]


def test_writes_publish_change_and_notify_listeners(service, fake_redis):
    seen = []
    service.subscribe(seen.append)

    service.add_to_guest_cart(7, 1, 2)
    service.clear_all_guest_carts()

    assert seen == [7, None]
    assert fake_redis.published == [
        (GUEST_CART_CHANNEL, {"guestId": "guest-1", "storeId": 7}),
        (GUEST_CART_CHANNEL, {"guestId": "guest-1", "storeId": None}),
    ]


def test_corrupted_cart_data_reads_as_empty(service, fake_redis):
    fake_redis.set(GuestCartRepo.key("guest-1"), "not json")
    assert service.get_guest_carts() == []


def test_listen_remote_filters_other_guests():
    repo = MagicMock()
    repo.listen.return_value = iter([{"guestId": "other", "storeId": 1}, {"guestId": "guest-1", "storeId": 7}])

    messages = list(GuestCartService("guest-1", repo=repo).listen_remote())
    assert messages == [{"guestId": "guest-1", "storeId": 7}]


# =====================================================
# Sync po zalogowaniu
# =====================================================
def test_sync_moves_all_items_and_clears_cart(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(7, 2, 1)
    add_to_cart = MagicMock()

    result = service.sync_guest_cart(7, add_to_cart)

    assert result.synced == 2
    assert result.failed == []
    add_to_cart.assert_any_call(7, 1, 2)
    add_to_cart.assert_any_call(7, 2, 1)
    assert service.get_guest_cart(7) is None


def test_sync_partial_failure_keeps_failed_items(service):
    service.add_to_guest_cart(7, 1, 2)
    service.add_to_guest_cart(7, 2, 1)
    service.add_to_guest_cart(8, 5, 1)

    def add_to_cart(store_id, product_id, quantity):
        if product_id == 2:
            raise CheckoutApiError("Out of stock", status_code=409)

    result = service.sync_guest_cart(7, add_to_cart)

    assert result.synced == 1
    assert result.failed == [2]
    remaining = service.get_guest_cart(7)
    assert [(i.product_id, i.quantity) for i in remaining.items] == [(2, 1)]
    #inne sklepy nietkniete
    assert service.get_guest_cart_item_count(8) == 1


def test_sync_malformed_response_counts_as_failed_item(service):
    service.add_to_guest_cart(7, 10, 1)
    service.add_to_guest_cart(7, 11, 1)

    def add_to_cart(store_id, product_id, quantity):
        if product_id == 11:
            raise ValueError("1 validation error for CartItem")

    result = service.sync_guest_cart(7, add_to_cart)

    assert result.synced == 1
    assert result.failed == [11]
    assert [i.product_id for i in service.get_guest_cart(7).items] == [11]


def test_sync_aborted_by_unexpected_error_still_drops_synced_items(service):
    service.add_to_guest_cart(7, 10, 1)
    service.add_to_guest_cart(7, 11, 1)

    def add_to_cart(store_id, product_id, quantity):
        if product_id == 11:
            raise RuntimeError("connection pool closed")

    with pytest.raises(RuntimeError):
        service.sync_guest_cart(7, add_to_cart)

    assert [i.product_id for i in service.get_guest_cart(7).items] == [11]


def test_sync_of_empty_cart_does_nothing(service):
    add_to_cart = MagicMock()
    result = service.sync_guest_cart(7, add_to_cart)
    assert result.synced == 0
    add_to_cart.assert_not_called()
