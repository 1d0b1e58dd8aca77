"""
Digest job: assemble one slot's content once, then decide, render and send
per user with bounded concurrency.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence, Set, Tuple

from nycping.core.entities import (
    ContentItem,
    DigestMode,
    Slot,
    UrgencyClass,
    User,
)
from nycping.core.errors import EnhancedDigestError, LockUnavailable
from nycping.core.schemas import EnhancedDigestContent
from nycping.core.scoring import score_items
from nycping.delivery.base import DeliveryChannel
from nycping.delivery.email_delivery import EmailDelivery
from nycping.delivery.file_delivery import FileDelivery
from nycping.delivery.templates import render_html, render_text, subject_line
from nycping.processing.deduplicator import cross_type_dedup
from nycping.processing.eligibility import SendEligibilityDecider, filter_repeats
from nycping.processing.enhancer import generate_enhanced_digest_content, is_digest_viable
from nycping.processing.router import SlotPlan, SlotRouter, select_immediate
from nycping.processing.summarizer import build_digest
from nycping.services.config import AppConfig, load_config
from nycping.services.content_store import SqliteContentStore
from nycping.services.database import Database
from nycping.services.job_lock import JobLock
from nycping.services.llm import LLMClient, create_llm
from nycping.services.scheduler import local_day, local_now
from nycping.services.send_history import SendHistory
from nycping.services.user_store import UserStore
from nycping.workflows.tasks import TaskQueue, TaskResult

logger = logging.getLogger(__name__)

Delivered = Tuple[str, int]

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class DigestJobOptions:
    force: bool = False
    skip_enhanced: bool = False


@dataclass
class DigestJobResult:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    mode: DigestMode = DigestMode.STANDARD
    errors: List[str] = field(default_factory=list)


def _tally(tasks: Sequence[TaskResult], result: DigestJobResult) -> Set[Delivered]:
    """Fold per-user outcomes into the job result; returns (id, version) pairs delivered."""
    delivered: Set[Delivered] = set()
    for task in tasks:
        if not task.success:
            result.failed += 1
            result.errors.append(f"{task.task_id}: {task.error}")
            continue
        status, pairs = task.result
        if status == SENT:
            result.sent += 1
            delivered.update(pairs)
        elif status == SKIPPED:
            result.skipped += 1
        else:
            result.failed += 1
            result.errors.append(f"{task.task_id}: delivery failed")
    return delivered


class DigestOrchestrator:
    def __init__(
        self,
        *,
        store: SqliteContentStore,
        history: SendHistory,
        users: UserStore,
        lock: JobLock,
        channel: DeliveryChannel,
        config: AppConfig,
        llm: Optional[LLMClient] = None,
    ):
        self.store = store
        self.history = history
        self.users = users
        self.lock = lock
        self.channel = channel
        self.config = config
        self.llm = llm
        self.router = SlotRouter(config.curation)
        self.decider = SendEligibilityDecider(config.curation)

    async def run(
        self,
        slot: Slot,
        options: Optional[DigestJobOptions] = None,
        now: Optional[datetime] = None,
    ) -> DigestJobResult:
        """
        Returns a no-op result with mode=locked when another run holds
        the slot's lock. The lock is released however the run ends.
        """
        options = options or DigestJobOptions()
        now = now or datetime.now(timezone.utc)
        job_name = f"digest-{slot.value}"

        try:
            async with self.lock.hold(job_name, self.config.LOCK_TTL_SECONDS):
                return await self._run_slot(slot, options, now)
        except LockUnavailable:
            logger.info(f"[{slot.value}] another run holds {job_name}; skipping", extra={"job": job_name})
            return DigestJobResult(mode=DigestMode.LOCKED)

    async def _load_candidates(self, since: datetime) -> List[ContentItem]:
        curation = self.config.curation
        items = score_items(await self.store.find_recent(None, since), curation)
        return cross_type_dedup(
            items,
            threshold=curation.similarity_threshold,
            fuzzy=curation.cross_type_fuzzy,
        ).accepted

    async def _run_slot(self, slot: Slot, options: DigestJobOptions, now: datetime) -> DigestJobResult:
        curation = self.config.curation
        day = local_day(now, curation.timezone)

        candidates = await self._load_candidates(now - timedelta(hours=curation.max_freshness_hours))
        plan = self.router.route(candidates, slot, now)
        mode, enhanced = await self._enhance(plan.included, options)

        result = DigestJobResult(mode=mode)
        users = await self.users.list_active()
        queue = TaskQueue(self.config.MAX_CONCURRENCY)
        for user in users:
            queue.submit(self._deliver_to_user, plan, user, day, mode, enhanced, options, now, task_id=user.id)

        await self._consume_status_changes(_tally(await queue.join(), result), result)

        logger.info(
            f"[{slot.value}] digest job done: sent={result.sent} skipped={result.skipped} "
            f"failed={result.failed} mode={mode.value}",
            extra={"slot": slot.value, "mode": mode.value},
        )
        return result

    async def _consume_status_changes(self, delivered: Set[Delivered], result: DigestJobResult) -> None:
        """A version bump is news only once. Kept while a failed user still needs it."""
        if result.failed:
            logger.info(f"Keeping status changes for retry: {result.failed} deliveries failed")
            return
        await self.store.clear_status_changed(delivered)

    async def _enhance(
        self,
        items: Sequence[ContentItem],
        options: DigestJobOptions,
    ) -> Tuple[DigestMode, Optional[EnhancedDigestContent]]:
        if options.skip_enhanced or self.llm is None or not self.config.LLM_ENABLED or not items:
            return DigestMode.STANDARD, None

        try:
            content = await generate_enhanced_digest_content(
                llm=self.llm,
                items=items,
                timeout=self.config.ENHANCED_TIMEOUT_SECONDS,
            )
        except EnhancedDigestError as e:
            logger.warning(f"Enhanced digest unavailable, using fallback: {e}")
            return DigestMode.FALLBACK, None

        if not is_digest_viable(content, self.config.MIN_SECTION_ITEMS):
            return DigestMode.FALLBACK, None
        return DigestMode.ENHANCED, content

    async def _send(
        self,
        user: User,
        slot_label: str,
        day: date,
        items: List[ContentItem],
        escalations: Sequence[str],
        mode: DigestMode,
        enhanced: Optional[EnhancedDigestContent],
        now: datetime,
    ) -> Tuple[str, List[Delivered]]:
        digest = build_digest(
            slot=slot_label,
            day=day,
            items=items,
            escalations=escalations,
            mode=mode,
            enhanced=enhanced,
        )
        # Render everything before touching the transport.
        html = render_html(digest, self.config.email_colors)
        text = render_text(digest)

        if not await self.history.claim(user.id, slot_label, day, mode.value, now):
            return SKIPPED, []

        try:
            delivery = await self.channel.send_email(
                to=user.email,
                subject=subject_line(digest),
                html=html,
                text=text,
            )
        except Exception:
            await self.history.release_claim(user.id, slot_label, day)
            raise
        if not delivery.success:
            await self.history.release_claim(user.id, slot_label, day)
            logger.error(
                f"[{slot_label}] delivery to {user.id} failed: {delivery.error}",
                extra={"slot": slot_label, "user_id": user.id},
            )
            return FAILED, []

        await self.history.mark_sent(
            items, user.id, slot_label, day, mode.value, message_id=delivery.id, sent_at=now
        )
        logger.info(
            f"[{slot_label}] sent {len(items)} items to {user.id}",
            extra={"slot": slot_label, "user_id": user.id, "mode": mode.value},
        )
        return SENT, [(item.id, item.version) for item in items]

    async def _deliver_to_user(
        self,
        plan: SlotPlan,
        user: User,
        day: date,
        mode: DigestMode,
        enhanced: Optional[EnhancedDigestContent],
        options: DigestJobOptions,
        now: datetime,
    ) -> Tuple[str, List[Delivered]]:
        state = await self.history.load_state(user.id, day, now)
        decision = self.decider.decide(plan, user, state, now, force=options.force)
        if not decision.send:
            return SKIPPED, []
        return await self._send(
            user, plan.slot.value, day, decision.items, decision.escalations, mode, enhanced, now
        )

    async def run_urgent_sweep(self, now: Optional[datetime] = None) -> DigestJobResult:
        """
        Push urgent high-priority items outside the slot schedule. Ignores
        quiet hours, slot opt-in and the daily cap; the don't-repeat rule
        still applies.
        """
        now = now or datetime.now(timezone.utc)
        job_name = "urgent-sweep"
        try:
            async with self.lock.hold(job_name, self.config.LOCK_TTL_SECONDS):
                return await self._sweep(now)
        except LockUnavailable:
            logger.info(f"another run holds {job_name}; skipping", extra={"job": job_name})
            return DigestJobResult(mode=DigestMode.LOCKED)

    async def _sweep(self, now: datetime) -> DigestJobResult:
        curation = self.config.curation
        window = curation.freshness_hours[UrgencyClass.URGENT]
        candidates = await self._load_candidates(now - timedelta(hours=window))
        urgent = select_immediate(candidates, now, curation)

        result = DigestJobResult(mode=DigestMode.STANDARD)
        if not urgent:
            logger.info("Urgent sweep: nothing to send")
            return result

        day = local_day(now, curation.timezone)
        slot_label = f"urgent-{local_now(curation.timezone, now):%H%M}"

        async def deliver(user: User) -> Tuple[str, List[Delivered]]:
            state = await self.history.load_state(user.id, day, now)
            items, escalations = filter_repeats(urgent, state)
            if not items:
                return SKIPPED, []
            return await self._send(user, slot_label, day, items, escalations, DigestMode.STANDARD, None, now)

        queue = TaskQueue(self.config.MAX_CONCURRENCY)
        for user in await self.users.list_active():
            queue.submit(deliver, user, task_id=user.id)

        await self._consume_status_changes(_tally(await queue.join(), result), result)
        logger.info(
            f"Urgent sweep done: items={len(urgent)} sent={result.sent} skipped={result.skipped} "
            f"failed={result.failed}",
            extra={"slot": slot_label},
        )
        return result


def create_channel(config: AppConfig, dry_run: bool = False) -> DeliveryChannel:
    if dry_run or not config.EMAIL_ENABLED:
        return FileDelivery(config.OUTPUT_DIR)
    return EmailDelivery(
        smtp_host=config.EMAIL_SMTP_HOST,
        smtp_port=config.EMAIL_SMTP_PORT,
        username=config.EMAIL_USERNAME,
        password=config.EMAIL_PASSWORD,
        sender=config.EMAIL_FROM,
    )


def create_orchestrator(config: AppConfig, dry_run: bool = False) -> DigestOrchestrator:
    """Wire the orchestrator's collaborators from configuration."""
    db = Database(config.DATABASE_PATH)
    return DigestOrchestrator(
        store=SqliteContentStore(db),
        history=SendHistory(db, lookback_hours=config.curation.max_freshness_hours),
        users=UserStore(db),
        lock=JobLock(db),
        channel=create_channel(config, dry_run),
        config=config,
        llm=create_llm(config),
    )


async def run_digest_job(
    slot: Slot,
    options: Optional[DigestJobOptions] = None,
    config: Optional[AppConfig] = None,
    dry_run: bool = False,
) -> DigestJobResult:
    config = config or load_config()
    return await create_orchestrator(config, dry_run).run(slot, options)
