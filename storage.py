import redis.asyncio as redis
import structlog

from config import Settings

logger = structlog.get_logger()

# Runs inside Redis, so the read, the check and the write happen as one unit.
# Returns the new balance, or false (nil to the client) when funds are short.
CONDITIONAL_DEBIT_SCRIPT = """
local balance = tonumber(redis.call('get', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
if balance >= amount then
    return redis.call('decrby', KEYS[1], amount)
end
return false
"""


def balance_key(account: str) -> str:
    return f"{account}/balance"


def create_redis_client(settings: Settings) -> redis.Redis:
    """Build a pooled Redis client from settings.

    Every command checks a connection out of the pool and hands it back when
    the command finishes, whether it succeeds or raises.
    """
    logger.info("Using redis URL", redis_url=settings.redis_url)
    pool = redis.ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        max_connections=settings.redis_max_connections,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)
