from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from mediajobs.adapters import (
    ExternalServiceAdapter,
    MvsepConfig,
    MvsepSeparationAdapter,
    VideoDownloadAdapter,
    VideoDownloadConfig,
)
from mediajobs.admission import AdmissionController
from mediajobs.cleanup import CleanupStats, CleanupSweeper
from mediajobs.credits import CreditGate
from mediajobs.db.postgres import PostgresTxRunner
from mediajobs.errors import not_found
from mediajobs.finalizers import DownloadFinalizer, SeparationFinalizer
from mediajobs.jobs_service import JobService
from mediajobs.models import LANE_DOWNLOAD, LANE_SEPARATION, LANES, utcnow
from mediajobs.object_storage import ObjectStorageBackend, create_object_storage_from_env
from mediajobs.poller import LanePoller, TickResult
from mediajobs.reminders import DispatchStats, ReminderDispatcher, WebhookConfirmationReceiver
from mediajobs.repositories import (
    InMemoryJobsRepository,
    InMemoryRemindersRepository,
    InMemoryTracksRepository,
    PostgresJobsRepository,
    PostgresRemindersRepository,
    PostgresTracksRepository,
)
from mediajobs.settings import Settings

logger = logging.getLogger(__name__)


class Orchestrator:
    """Wires stores, adapters and lane pollers; holds no job state of its own."""

    def __init__(
        self,
        *,
        settings: Settings,
        jobs_repos: dict[str, Any],
        tracks_repo: Any,
        reminders_repo: Any,
        adapters: dict[str, ExternalServiceAdapter],
        storage: ObjectStorageBackend,
        credit_gate: CreditGate | None = None,
        clock: Callable[[], datetime] = utcnow,
        reminder_sender: Callable[..., Any] | None = None,
    ) -> None:
        self.settings = settings
        self.jobs_repos = dict(jobs_repos)
        self.tracks_repo = tracks_repo
        self.reminders_repo = reminders_repo
        self.adapters = dict(adapters)
        self.storage = storage

        self.job_service = JobService(
            jobs_repos=self.jobs_repos,
            tracks_repo=tracks_repo,
            credit_gate=credit_gate,
            clock=clock,
        )
        finalizers = {
            LANE_SEPARATION: SeparationFinalizer(tracks_repo=tracks_repo, storage=storage, clock=clock),
            LANE_DOWNLOAD: DownloadFinalizer(
                tracks_repo=tracks_repo,
                storage=storage,
                clock=clock,
                on_track_created=self.job_service.enqueue_separation_for_track,
            ),
        }
        self.pollers: dict[str, LanePoller] = {}
        for lane in LANES:
            repo = self.jobs_repos[lane]
            self.pollers[lane] = LanePoller(
                lane=lane,
                jobs_repo=repo,
                adapter=self.adapters[lane],
                finalizer=finalizers[lane],
                admission=AdmissionController(
                    jobs_repo=repo,
                    lane=lane,
                    cap=settings.lane_caps.get(lane, 1),
                    clock=clock,
                ),
                clock=clock,
            )

        self.sweeper = CleanupSweeper(
            jobs_repos=self.jobs_repos,
            retention_hours=settings.cleanup_retention_hours,
            clock=clock,
        )
        self.confirmation_receiver = WebhookConfirmationReceiver(reminders_repo=reminders_repo, clock=clock)
        dispatcher_kwargs: dict[str, Any] = {}
        if reminder_sender is not None:
            dispatcher_kwargs["sender"] = reminder_sender
        self.reminder_dispatcher = ReminderDispatcher(
            reminders_repo=reminders_repo,
            lead_minutes=settings.reminder_lead_minutes,
            window_minutes=settings.reminder_window_minutes,
            timeout_s=settings.reminder_timeout_s,
            clock=clock,
            **dispatcher_kwargs,
        )

    def tick(self, lane: str) -> TickResult:
        poller = self.pollers.get(lane)
        if poller is None:
            raise not_found("LANE_NOT_FOUND", f"unknown lane: {lane}")
        return poller.tick()

    def cleanup(self, now: datetime | None = None) -> CleanupStats:
        return self.sweeper.sweep(now)

    def dispatch_reminders(self, now: datetime | None = None) -> DispatchStats:
        return self.reminder_dispatcher.dispatch_due(now)


def build_in_memory_stores() -> tuple[dict[str, Any], Any, Any]:
    tracks_repo = InMemoryTracksRepository()
    jobs_repos = {lane: InMemoryJobsRepository(lane=lane, resources=tracks_repo) for lane in LANES}
    return jobs_repos, tracks_repo, InMemoryRemindersRepository()


def _build_postgres_stores(settings: Settings) -> tuple[dict[str, Any], Any, Any]:
    tx_runner = PostgresTxRunner(settings.postgres_dsn)
    jobs_repos = {lane: PostgresJobsRepository(tx_runner=tx_runner, lane=lane) for lane in LANES}
    return jobs_repos, PostgresTracksRepository(tx_runner=tx_runner), PostgresRemindersRepository(tx_runner=tx_runner)


def _build_stores(settings: Settings) -> tuple[dict[str, Any], Any, Any]:
    if settings.store_backend == "postgres":
        try:
            return _build_postgres_stores(settings)
        except (RuntimeError, ValueError):
            if settings.require_truestack:
                raise
            logger.warning("postgres store unavailable, falling back to in-memory store")
    elif settings.require_truestack:
        raise RuntimeError("MEDIAJOBS_REQUIRE_TRUESTACK is set but MEDIAJOBS_STORE_BACKEND is not postgres")
    return build_in_memory_stores()


def create_orchestrator_from_env(environ: Mapping[str, str] | None = None) -> Orchestrator:
    env = os.environ if environ is None else environ
    settings = Settings.from_env(env)
    jobs_repos, tracks_repo, reminders_repo = _build_stores(settings)
    return Orchestrator(
        settings=settings,
        jobs_repos=jobs_repos,
        tracks_repo=tracks_repo,
        reminders_repo=reminders_repo,
        adapters={
            LANE_SEPARATION: MvsepSeparationAdapter(config=MvsepConfig.from_env(env)),
            LANE_DOWNLOAD: VideoDownloadAdapter(config=VideoDownloadConfig.from_env(env)),
        },
        storage=create_object_storage_from_env(env),
    )
