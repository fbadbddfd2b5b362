import json
import os
import redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

redis_client = redis.from_url(REDIS_URL, decode_responses=True)

ENTRY_PREFIX = "entries:"
UPDATES_CHANNEL = "entry_updates"


def increment_entry_count(campaign_slug: str) -> int:
    key = f"{ENTRY_PREFIX}{campaign_slug or 'unknown'}"
    return redis_client.incr(key)


def decrement_entry_count(campaign_slug: str) -> int:
    key = f"{ENTRY_PREFIX}{campaign_slug or 'unknown'}"
    count = redis_client.decr(key)
    if count < 0:
        redis_client.set(key, 0)
        return 0
    return count


def get_entry_counts() -> dict[str, int]:
    keys = redis_client.keys(f"{ENTRY_PREFIX}*")
    counts = {}
    for key in keys:
        slug = key.replace(ENTRY_PREFIX, "")
        counts[slug] = int(redis_client.get(key) or 0)
    return counts


def publish_update(event: str, payload: dict) -> int:
    message = json.dumps({"event": event, "data": payload}, default=str)
    return redis_client.publish(UPDATES_CHANNEL, message)
