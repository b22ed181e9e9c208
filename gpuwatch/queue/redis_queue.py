"""Redis-backed job queue.

Per queue name, under `{prefix}:{queue}`:
    :waiting  list of job ids (LPUSH in, RPOP out)
    :delayed  zset job id -> ready-at epoch seconds
    :active   zset job id -> lease expiry epoch seconds
    :jobs     hash job id -> job JSON
    :failed   list of failed job JSON (newest first, trimmed)
Dedup keys live at `{prefix}:dedup:{key}` and hold the owning job id.
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import Job, JobDescriptor

logger = logging.getLogger(__name__)

# KEYS: dedup, jobs, waiting, delayed
# ARGV: job id, job json, ready-at, now, use-dedup
ENQUEUE_SCRIPT = """
if ARGV[5] == "1" then
    if not redis.call("SET", KEYS[1], ARGV[1], "NX") then
        return 0
    end
end
redis.call("HSET", KEYS[2], ARGV[1], ARGV[2])
if tonumber(ARGV[3]) > tonumber(ARGV[4]) then
    redis.call("ZADD", KEYS[4], ARGV[3], ARGV[1])
else
    redis.call("LPUSH", KEYS[3], ARGV[1])
end
return 1
"""

# KEYS: waiting, delayed, active, jobs
# ARGV: now, lease expiry, dedup key prefix
CLAIM_SCRIPT = """
local due = redis.call("ZRANGEBYSCORE", KEYS[2], "-inf", ARGV[1])
for _, id in ipairs(due) do
    redis.call("ZREM", KEYS[2], id)
    redis.call("LPUSH", KEYS[1], id)
end
local expired = redis.call("ZRANGEBYSCORE", KEYS[3], "-inf", ARGV[1])
for _, id in ipairs(expired) do
    redis.call("ZREM", KEYS[3], id)
    redis.call("RPUSH", KEYS[1], id)
end
while true do
    local id = redis.call("RPOP", KEYS[1])
    if not id then
        return false
    end
    local raw = redis.call("HGET", KEYS[4], id)
    if raw then
        redis.call("ZADD", KEYS[3], ARGV[2], id)
        local job = cjson.decode(raw)
        local key = job["dedup_key"]
        if type(key) == "string" then
            local full = ARGV[3] .. key
            if redis.call("GET", full) == id then
                redis.call("DEL", full)
            end
        end
        return raw
    end
end
"""


class RedisJobQueue(JobQueue):
    """Queue shared by every worker process pointed at the same Redis."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        lease_seconds: Optional[float] = None,
        failed_retention: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.prefix = prefix or settings.queue_key_prefix
        self.lease_seconds = lease_seconds or settings.job_lease_seconds
        self.failed_retention = failed_retention or settings.failed_job_retention
        self._redis = client
        self._enqueue_script = None
        self._claim_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        if self._enqueue_script is None:
            self._enqueue_script = self._redis.register_script(ENQUEUE_SCRIPT)
            self._claim_script = self._redis.register_script(CLAIM_SCRIPT)
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._enqueue_script = None
            self._claim_script = None

    def _key(self, queue: str, part: str) -> str:
        return f"{self.prefix}:{queue}:{part}"

    @property
    def _dedup_prefix(self) -> str:
        return f"{self.prefix}:dedup:"

    async def enqueue(self, descriptor: JobDescriptor) -> Optional[Job]:
        await self._get_redis()
        job = descriptor.to_job()
        now = time.time()
        ready_at = now + descriptor.delay if descriptor.delay > 0 else 0
        dedup = f"{self._dedup_prefix}{job.dedup_key}" if job.dedup_key else f"{self._dedup_prefix}-"

        added = await self._enqueue_script(
            keys=[
                dedup,
                self._key(job.queue, "jobs"),
                self._key(job.queue, "waiting"),
                self._key(job.queue, "delayed"),
            ],
            args=[job.id, job.to_json(), ready_at, now, "1" if job.dedup_key else "0"],
        )
        if not added:
            logger.debug(f"Dedup hit for {job.dedup_key}")
            metrics.record_job_deduplicated(job.queue)
            return None
        return job

    async def claim(self, queue: str) -> Optional[Job]:
        await self._get_redis()
        now = time.time()
        raw = await self._claim_script(
            keys=[
                self._key(queue, "waiting"),
                self._key(queue, "delayed"),
                self._key(queue, "active"),
                self._key(queue, "jobs"),
            ],
            args=[now, now + self.lease_seconds, self._dedup_prefix],
        )
        if not raw:
            return None
        return Job.from_json(raw)

    async def ack(self, job: Job) -> None:
        r = await self._get_redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hdel(self._key(job.queue, "jobs"), job.id)
            await pipe.execute()

    async def retry(self, job: Job, delay: float) -> None:
        r = await self._get_redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hset(self._key(job.queue, "jobs"), job.id, job.to_json())
            pipe.zadd(self._key(job.queue, "delayed"), {job.id: time.time() + delay})
            if job.dedup_key:
                pipe.set(f"{self._dedup_prefix}{job.dedup_key}", job.id, nx=True)
            await pipe.execute()

    async def fail(self, job: Job) -> None:
        r = await self._get_redis()
        failed_key = self._key(job.queue, "failed")
        async with r.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hdel(self._key(job.queue, "jobs"), job.id)
            pipe.lpush(failed_key, job.to_json())
            pipe.ltrim(failed_key, 0, self.failed_retention - 1)
            await pipe.execute()

    async def failed_jobs(self, queue: str) -> list[Job]:
        r = await self._get_redis()
        raw = await r.lrange(self._key(queue, "failed"), 0, -1)
        return [Job.from_json(item) for item in raw]

    async def pending_count(self, queue: str) -> int:
        r = await self._get_redis()
        waiting = await r.llen(self._key(queue, "waiting"))
        delayed = await r.zcard(self._key(queue, "delayed"))
        return waiting + delayed
