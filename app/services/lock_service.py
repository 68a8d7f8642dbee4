import redis

from app.utils.logging import get_logger
from app.utils.retry import redis_retry
from app.utils.settings import CALLBACK_LOCK_TTL_SECONDS, REDIS_URL

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#skrypt lua wykonuje sie atomowo - nikt nie wcisnie sie miedzy GET a DEL,
#wiec nie zwolnimy locka ktory w miedzyczasie przejal inny worker


class LockService:
    """
    -lock na przetwarzanie callbacku platnosci (jedna referencja = jeden worker)
    -zwalnianie locka tylko przez wlasciciela
    -TTL zeby lock nie wisial po padnietym workerze
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def callback_lock_key(reference: str) -> str:
        return f"payment_callback:{reference}:lock"

    @redis_retry()
    def acquire_callback_lock(self, reference: str, owner: str, ttl: int = CALLBACK_LOCK_TTL_SECONDS) -> bool:
        key = self.callback_lock_key(reference)
        logger.info(f"Acquire lock {key} for {owner}")
        #SET payment_callback:PAY_1:lock "worker-1" NX EX 60
        return bool(
            self.redis.set(
                name=key,
                value=owner,
                nx=True,  #tylko jesli nikt jeszcze nie trzyma
                ex=ttl,
            )
        )

    @redis_retry()
    def release_callback_lock(self, reference: str, owner: str) -> bool:
        key = self.callback_lock_key(reference)
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)
