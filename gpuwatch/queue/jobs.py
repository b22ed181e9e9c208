"""Job descriptors, retry policy and per-queue defaults."""

import enum
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


class QueueName(str, enum.Enum):
    INGEST = "ingest"
    SCORE = "score"
    ALERT = "alert"
    MAINTENANCE = "maintenance"


class BackoffType(str, enum.Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class BackoffPolicy:
    type: BackoffType
    delay: float  # seconds

    def delay_for(self, attempt: int) -> float:
        """
        Delay before retrying after `attempt` failed attempts (1-based).

        Exponential doubles from the base delay: 1 -> delay, 2 -> 2*delay, ...
        """
        if attempt < 1:
            return 0.0
        if self.type == BackoffType.EXPONENTIAL:
            return self.delay * (2 ** (attempt - 1))
        return self.delay

    def to_dict(self) -> dict:
        return {"type": self.type.value, "delay": self.delay}

    @classmethod
    def from_dict(cls, data: dict) -> "BackoffPolicy":
        return cls(BackoffType(data["type"]), float(data["delay"]))


@dataclass(frozen=True)
class QueuePolicy:
    attempts: int
    backoff: BackoffPolicy


QUEUE_POLICIES: dict[str, QueuePolicy] = {
    QueueName.INGEST.value: QueuePolicy(3, BackoffPolicy(BackoffType.EXPONENTIAL, 5.0)),
    QueueName.SCORE.value: QueuePolicy(2, BackoffPolicy(BackoffType.FIXED, 2.0)),
    QueueName.ALERT.value: QueuePolicy(3, BackoffPolicy(BackoffType.EXPONENTIAL, 3.0)),
    QueueName.MAINTENANCE.value: QueuePolicy(2, BackoffPolicy(BackoffType.FIXED, 60.0)),
}


@dataclass
class JobDescriptor:
    """
    What to enqueue and how to treat it.

    `dedup_key` collapses enqueues while a job with the same key is pending
    or delayed. `repeat_interval` (seconds) or `cron` mark a recurring
    registration for the scheduler; the queue itself ignores both.
    """

    queue: str
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    dedup_key: Optional[str] = None
    delay: float = 0.0
    repeat_interval: Optional[float] = None
    cron: Optional[dict[str, Any]] = None
    attempts: Optional[int] = None
    backoff: Optional[BackoffPolicy] = None

    def policy(self) -> QueuePolicy:
        default = QUEUE_POLICIES.get(
            self.queue, QueuePolicy(1, BackoffPolicy(BackoffType.FIXED, 0.0))
        )
        return QueuePolicy(
            attempts=self.attempts or default.attempts,
            backoff=self.backoff or default.backoff,
        )

    def to_job(self) -> "Job":
        policy = self.policy()
        return Job(
            id=uuid.uuid4().hex,
            queue=self.queue,
            name=self.name,
            payload=dict(self.payload),
            attempts=policy.attempts,
            backoff=policy.backoff,
            dedup_key=self.dedup_key,
        )


@dataclass
class Job:
    """A job instance as stored in a queue backend."""

    id: str
    queue: str
    name: str
    payload: dict[str, Any]
    attempts: int
    backoff: BackoffPolicy
    dedup_key: Optional[str] = None
    attempts_made: int = 0
    created_at: float = field(default_factory=time.time)
    last_error: Optional[str] = None

    def to_json(self) -> str:
        data = asdict(self)
        data["backoff"] = self.backoff.to_dict()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        data["backoff"] = BackoffPolicy.from_dict(data["backoff"])
        return cls(**data)


# ----------------------------------------------------------------------
# Pipeline job builders
# ----------------------------------------------------------------------

def ingest_job(source: str, gpu_id: Optional[int] = None) -> JobDescriptor:
    payload: dict[str, Any] = {"source": source}
    if gpu_id is not None:
        payload["gpu_id"] = gpu_id
    scope = "all" if gpu_id is None else str(gpu_id)
    return JobDescriptor(
        queue=QueueName.INGEST.value,
        name=f"ingest-{source}",
        payload=payload,
        dedup_key=f"ingest-{source}-{scope}",
    )


def score_job(gpu_id: int, delay: float = 1.0) -> JobDescriptor:
    return JobDescriptor(
        queue=QueueName.SCORE.value,
        name="score-gpu",
        payload={"gpu_id": gpu_id},
        dedup_key=f"deal-{gpu_id}",
        delay=delay,
    )


def alert_job(payload: dict[str, Any]) -> JobDescriptor:
    return JobDescriptor(
        queue=QueueName.ALERT.value,
        name="send-alert",
        payload=payload,
    )


def compaction_job() -> JobDescriptor:
    return JobDescriptor(
        queue=QueueName.MAINTENANCE.value,
        name="compact-history",
        dedup_key="compact-history",
    )
