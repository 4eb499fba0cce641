"""Component wiring.

Builds every control-plane component from Settings exactly once so the API
process, the worker, and tests share the same construction path.
"""

from dataclasses import dataclass

import redis.asyncio as redis

from kudos.abuse.detector import AbuseDetector
from kudos.abuse.review import AbuseReviewService
from kudos.audit.sink import AuditSink
from kudos.breaker.registry import CircuitBreakerRegistry
from kudos.clock import Clock, SystemClock
from kudos.config.settings import Settings
from kudos.idempotency.guard import IdempotencyGuard
from kudos.jobs.handlers import BuiltinHandlers
from kudos.jobs.queue import JobQueue
from kudos.jobs.worker import JobWorker, PeriodicScheduler
from kudos.notifications.dispatcher import NotificationDispatcher
from kudos.observability.logging import get_logger
from kudos.quota.manager import QuotaManager
from kudos.ratelimit.limiter import RateLimiter
from kudos.recognition.service import RecognitionService
from kudos.storage.store import DocumentStore
from kudos.storage.stores.inmemory import InMemoryDocumentStore
from kudos.storage.stores.redis import RedisDocumentStore

logger = get_logger(__name__)


@dataclass
class ControlPlane:
    """All wired components of one process."""

    settings: Settings
    clock: Clock
    store: DocumentStore
    audit: AuditSink
    breakers: CircuitBreakerRegistry
    idempotency: IdempotencyGuard
    rate_limiter: RateLimiter
    quotas: QuotaManager
    abuse: AbuseDetector
    reviews: AbuseReviewService
    jobs: JobQueue
    dispatcher: NotificationDispatcher
    recognitions: RecognitionService
    worker: JobWorker
    scheduler: PeriodicScheduler
    redis_client: redis.Redis | None = None

    async def start_background(self) -> None:
        """Start the job worker and the periodic scheduler."""
        await self.worker.start()
        await self.scheduler.start()

    async def close(self) -> None:
        """Stop background loops and release connections."""
        await self.scheduler.stop()
        await self.worker.stop()
        await self.dispatcher.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        logger.info("control_plane_closed")


def create_store(
    settings: Settings, clock: Clock
) -> tuple[DocumentStore, redis.Redis | None]:
    """Create the configured document store backend."""
    storage = settings.storage
    if storage.backend == "redis":
        client = redis.from_url(storage.redis_url, decode_responses=True)
        store = RedisDocumentStore(
            client,
            key_prefix=storage.key_prefix,
            operation_timeout=storage.operation_timeout_seconds,
            clock=clock,
        )
        # Log without credentials
        logger.info("store_initialized", backend="redis", url=storage.redis_url.split("@")[-1])
        return store, client

    logger.info("store_initialized", backend="inmemory")
    return InMemoryDocumentStore(clock=clock), None


def build_control_plane(
    settings: Settings,
    clock: Clock | None = None,
    store: DocumentStore | None = None,
) -> ControlPlane:
    """Wire every component from settings.

    Args:
        settings: Loaded configuration
        clock: Time source (system clock by default)
        store: Pre-built store; overrides settings.storage when given
    """
    clock = clock or SystemClock()
    redis_client = None
    if store is None:
        store, redis_client = create_store(settings, clock)

    cas_attempts = settings.storage.cas_max_attempts
    audit = AuditSink(store, clock)
    breakers = CircuitBreakerRegistry(settings.breakers, clock)
    idempotency = IdempotencyGuard(store, settings.idempotency, clock, cas_attempts)
    rate_limiter = RateLimiter(store, settings.rate_limits, clock, audit, cas_attempts)
    quotas = QuotaManager(store, settings.quotas, clock, audit, cas_attempts)
    abuse = AbuseDetector(store, settings.abuse, settings.scoring, clock, audit)
    reviews = AbuseReviewService(store, clock, audit, cas_attempts)
    jobs = JobQueue(store, settings.jobs, clock, audit, cas_attempts)
    dispatcher = NotificationDispatcher(settings.notifications, breakers)

    recognitions = RecognitionService(
        store=store,
        idempotency=idempotency,
        rate_limiter=rate_limiter,
        quotas=quotas,
        abuse=abuse,
        jobs=jobs,
        audit=audit,
        config=settings.recognition,
        scoring=settings.scoring,
        rate_limit_types=settings.rate_limits.recognition_limit_types,
        quota_actions=settings.quotas.recognition_actions,
        clock=clock,
    )

    worker = JobWorker(
        jobs,
        poll_interval_seconds=settings.jobs.poll_interval_seconds,
        job_timeout_seconds=settings.jobs.job_timeout_seconds,
    )
    BuiltinHandlers(jobs, dispatcher, idempotency, rate_limiter, quotas).register(worker)
    scheduler = PeriodicScheduler.from_config(jobs, settings.jobs.schedule, clock)

    logger.info(
        "control_plane_built",
        backend=settings.storage.backend,
        breakers=breakers.names(),
        handlers=worker.handlers,
    )
    return ControlPlane(
        settings=settings,
        clock=clock,
        store=store,
        audit=audit,
        breakers=breakers,
        idempotency=idempotency,
        rate_limiter=rate_limiter,
        quotas=quotas,
        abuse=abuse,
        reviews=reviews,
        jobs=jobs,
        dispatcher=dispatcher,
        recognitions=recognitions,
        worker=worker,
        scheduler=scheduler,
        redis_client=redis_client,
    )
