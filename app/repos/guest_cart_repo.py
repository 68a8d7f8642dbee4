# app/repos/guest_cart_repo.py
import json
from typing import Any, Dict, Iterator, List

import redis
from pydantic import TypeAdapter, ValidationError

from app.domain.schemas import GuestCart
from app.utils.logging import get_logger
from app.utils.retry import redis_retry
from app.utils.settings import GUEST_CART_TTL_SECONDS, REDIS_URL

logger = get_logger(__name__)

GUEST_CART_KEY_PREFIX = "guest_cart"
GUEST_CART_CHANNEL = "guest_cart_updated"

_carts_adapter = TypeAdapter(List[GuestCart])


class GuestCartRepo:
    """
    Koszyki goscia w redisie - jeden klucz na przegladarke (guest_id),
    wszystkie sklepy jako jedna tablica JSON. Zapis = last-write-wins.
    """

    def __init__(self, client: redis.Redis | None = None, ttl: int = GUEST_CART_TTL_SECONDS):
        self.redis = client or redis.Redis.from_url(REDIS_URL, decode_responses=True)
        self.ttl = ttl

    @staticmethod
    def key(guest_id: str) -> str:
        return f"{GUEST_CART_KEY_PREFIX}:{guest_id}"

    @redis_retry()
    def load(self, guest_id: str) -> List[GuestCart]:
        raw = self.redis.get(self.key(guest_id))
        if not raw:
            return []
        try:
            return _carts_adapter.validate_json(raw)
        except ValidationError as e:
            # uszkodzony wpis traktujemy jak pusty koszyk
            logger.error(f"Invalid guest cart data for {guest_id}, ignoring: {e}")
            return []

    @redis_retry()
    def save(self, guest_id: str, carts: List[GuestCart]) -> None:
        if not carts:
            self.redis.delete(self.key(guest_id))
            return
        payload = _carts_adapter.dump_json(carts, by_alias=True)
        self.redis.set(self.key(guest_id), payload, ex=self.ttl)

    @redis_retry()
    def delete(self, guest_id: str) -> None:
        self.redis.delete(self.key(guest_id))

    @redis_retry()
    def publish(self, guest_id: str, store_id: int | None) -> None:
        message = json.dumps({"guestId": guest_id, "storeId": store_id})
        self.redis.publish(GUEST_CART_CHANNEL, message)

    def listen(self) -> Iterator[Dict[str, Any]]:
        """Blokujacy iterator powiadomien z innych procesow/kart."""
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(GUEST_CART_CHANNEL)
        try:
            for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError) as e:
                    logger.warning(f"Malformed guest cart notification skipped: {e}")
        finally:
            pubsub.close()
