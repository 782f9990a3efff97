import logging
import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


class PubSubClient:
    """Thin publisher over Redis channels. Delivery is best effort."""

    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        if redis_client is not None:
            self.redis = redis_client
        else:
            self.redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_tournament_event(self, tournament_id, event: Event):
        self.publish(f"tournament:{tournament_id}:events", event)
        self.publish(GLOBAL_CHANNEL, event)

    def publish_user_notification(self, user_id, event: Event):
        self.publish(f"user:{user_id}:notifications", event)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
