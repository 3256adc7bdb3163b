import redis.asyncio as redis
import os
from dotenv import load_dotenv

load_dotenv()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Chat events are published per chat on "chat:<chat_id>"
CHAT_CHANNEL_PREFIX = "chat:"

# Connection Pool (Reusable)
pool = redis.ConnectionPool.from_url(REDIS_URL, decode_responses=True)

class RedisManager:
    @staticmethod
    def get_client() -> redis.Redis:
        """
        Returns an async Redis client from the global connection pool.
        """
        return redis.Redis(connection_pool=pool)

    @staticmethod
    def chat_channel(chat_id: str) -> str:
        return f"{CHAT_CHANNEL_PREFIX}{chat_id}"

    @staticmethod
    async def publish_chat_event(chat_id: str, payload: str) -> int:
        """Publishes a serialized chat event; returns the number of receivers."""
        client = RedisManager.get_client()
        return await client.publish(RedisManager.chat_channel(chat_id), payload)

    @staticmethod
    async def close():
        await pool.disconnect()
