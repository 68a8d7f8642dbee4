# app/services/guest_cart_service.py
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List

from redis.exceptions import RedisError

from app.domain.errors import CheckoutError
from app.domain.schemas import GuestCart, GuestCartItem, GuestCartSyncResult
from app.repos.guest_cart_repo import GuestCartRepo
from app.utils.logging import get_logger
from app.utils.settings import GUEST_CART_TTL_SECONDS

logger = get_logger(__name__)

GuestCartListener = Callable[[int | None], None]
AddToCart = Callable[[int, int, int], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuestCartService:
    """
    Koszyk goscia (niezalogowany kupujacy) - tylko productId i ilosc, bez cen.
    Po zalogowaniu sync_guest_cart przenosi pozycje do koszyka uzytkownika.
    """

    def __init__(
        self,
        guest_id: str,
        repo: GuestCartRepo | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_age_seconds: int = GUEST_CART_TTL_SECONDS,
    ):
        self.guest_id = guest_id
        self.repo = repo or GuestCartRepo()
        self.clock = clock
        self.max_age = timedelta(seconds=max_age_seconds)
        self._listeners: List[GuestCartListener] = []

    # =====================================================
    # Odczyt
    # =====================================================
    def get_guest_carts(self) -> List[GuestCart]:
        carts = self.repo.load(self.guest_id)
        now = self.clock()
        valid = [cart for cart in carts if now - _aware(cart.updated_at) < self.max_age]

        #przy okazji sprzatamy wygasle koszyki
        if len(valid) != len(carts):
            logger.info(f"Dropping {len(carts) - len(valid)} expired guest carts of {self.guest_id}")
            self.repo.save(self.guest_id, valid)
        return valid

    def get_guest_cart(self, store_id: int) -> GuestCart | None:
        return next((cart for cart in self.get_guest_carts() if cart.store_id == store_id), None)

    def get_guest_cart_item_count(self, store_id: int) -> int:
        cart = self.get_guest_cart(store_id)
        return sum(item.quantity for item in cart.items) if cart else 0

    def get_total_guest_cart_items(self) -> int:
        return sum(item.quantity for cart in self.get_guest_carts() for item in cart.items)

    def get_guest_cart_for_sync(self, store_id: int) -> List[GuestCartItem]:
        cart = self.get_guest_cart(store_id)
        return list(cart.items) if cart else []

    # =====================================================
    # Zapis
    # =====================================================
    def add_to_guest_cart(self, store_id: int, product_id: int, quantity: int) -> GuestCart:
        if quantity <= 0:
            raise ValueError("Quantity must be greater than 0")

        now = self.clock()
        carts = self.get_guest_carts()
        cart = next((c for c in carts if c.store_id == store_id), None)

        if cart is None:
            cart = GuestCart(store_id=store_id, items=[], updated_at=now)
            carts.append(cart)

        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item is not None:
            item.quantity += quantity
        else:
            cart.items.append(GuestCartItem(product_id=product_id, quantity=quantity, store_id=store_id, added_at=now))
        cart.updated_at = now

        logger.info(f"Guest {self.guest_id} added product {product_id} x{quantity} to store {store_id} cart")
        self._save(carts, store_id)
        return cart

    def update_guest_cart_item(self, store_id: int, product_id: int, quantity: int) -> GuestCart | None:
        """Ilosc <= 0 usuwa pozycje; pusty koszyk znika. Brak pozycji = nic sie nie dzieje."""
        carts = self.get_guest_carts()
        cart = next((c for c in carts if c.store_id == store_id), None)
        if cart is None:
            return None

        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item is None:
            return cart

        if quantity <= 0:
            cart.items.remove(item)
        else:
            item.quantity = quantity
        cart.updated_at = self.clock()

        if not cart.items:
            carts.remove(cart)
            cart = None

        self._save(carts, store_id)
        return cart

    def remove_from_guest_cart(self, store_id: int, product_id: int) -> GuestCart | None:
        return self.update_guest_cart_item(store_id, product_id, 0)

    def clear_guest_cart(self, store_id: int) -> None:
        carts = [cart for cart in self.get_guest_carts() if cart.store_id != store_id]
        self._save(carts, store_id)

    def clear_all_guest_carts(self) -> None:
        self.repo.delete(self.guest_id)
        self._notify(None)

    # =====================================================
    # Sync po zalogowaniu
    # =====================================================
    def sync_guest_cart(self, store_id: int, add_to_cart: AddToCart) -> GuestCartSyncResult:
        """
        Kazda pozycja leci osobno do koszyka uzytkownika.
        Udane pozycje znikaja z koszyka goscia, nieudane zostaja do ponownej proby,
        wiec nic nie ginie przy czesciowej porazce.
        """
        items = self.get_guest_cart_for_sync(store_id)
        if not items:
            return GuestCartSyncResult(synced=0, failed=[])

        synced: List[int] = []
        failed: List[int] = []
        for item in items:
            try:
                add_to_cart(store_id, item.product_id, item.quantity)
                synced.append(item.product_id)
            except (CheckoutError, ValueError) as e:
                #ValueError = zla odpowiedz API (pydantic ValidationError)
                logger.warning(f"Failed to sync guest cart product {item.product_id} for store {store_id}: {e}")
                failed.append(item.product_id)
            except Exception:
                #przerwany sync - to co juz przeszlo nie moze zostac u goscia
                self._drop_items(store_id, synced)
                raise

        if not failed:
            self.clear_guest_cart(store_id)
        else:
            self._drop_items(store_id, synced)

        logger.info(f"Guest cart sync for store {store_id}: synced={len(synced)} failed={len(failed)}")
        return GuestCartSyncResult(synced=len(synced), failed=failed)

    def _drop_items(self, store_id: int, product_ids: List[int]) -> None:
        if not product_ids:
            return
        carts = self.get_guest_carts()
        cart = next((c for c in carts if c.store_id == store_id), None)
        if cart is None:
            return
        cart.items = [item for item in cart.items if item.product_id not in product_ids]
        cart.updated_at = self.clock()
        if not cart.items:
            carts.remove(cart)
        self._save(carts, store_id)

    # =====================================================
    # Powiadomienia
    # =====================================================
    def subscribe(self, listener: GuestCartListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def listen_remote(self) -> Iterator[Dict[str, Any]]:
        """Powiadomienia o zmianach koszyka tego goscia z innych procesow."""
        for message in self.repo.listen():
            if message.get("guestId") == self.guest_id:
                yield message

    def _save(self, carts: List[GuestCart], store_id: int | None) -> None:
        self.repo.save(self.guest_id, carts)
        self._notify(store_id)

    def _notify(self, store_id: int | None) -> None:
        try:
            self.repo.publish(self.guest_id, store_id)
        except RedisError as e:
            # powiadomienie jest best-effort, zapis juz sie udal
            logger.warning(f"Failed to publish guest cart update for {self.guest_id}: {e}")

        for listener in list(self._listeners):
            listener(store_id)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
