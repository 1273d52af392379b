import pathlib
import sys
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.errors import ArtifactFetchError
from mediajobs.main import create_app
from mediajobs.models import LANE_DOWNLOAD, LANE_SEPARATION, STATE_IN_PROGRESS, StatusResult, SubmitResult
from mediajobs.object_storage import LocalObjectStorage, ObjectStorageConfig
from mediajobs.orchestrator import Orchestrator, build_in_memory_stores
from mediajobs.reminders import WebhookDeliveryError
from mediajobs.settings import Settings

CRON_SECRET = "cron_test_secret"
START = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedAdapter(ExternalServiceAdapter):
    """Adapter whose remote behaviour is set up per test.

    ``submit_results`` is consumed in order; ``status_results[ref]`` is
    consumed in order and its last entry repeats. Exceptions are raised.
    """

    def __init__(self, name: str = "scripted") -> None:
        self.name = name
        self.submit_results: list = []
        self.status_results: dict[str, list] = {}
        self.artifacts: dict[str, bytes] = {}
        self.submitted: list[str] = []
        self.checked: list[str] = []

    def submit(self, job):
        self.submitted.append(job.id)
        item = self.submit_results.pop(0) if self.submit_results else SubmitResult(external_ref=f"ext_{job.id}")
        if isinstance(item, BaseException):
            raise item
        return item

    def check_status(self, external_ref):
        self.checked.append(external_ref)
        script = self.status_results.get(external_ref)
        if not script:
            return StatusResult(state=STATE_IN_PROGRESS, progress=0)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def fetch_artifact(self, url):
        if url not in self.artifacts:
            raise ArtifactFetchError(f"artifact download failed: {url}")
        return self.artifacts[url]


class RecordingSender:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.failing_urls: set[str] = set()

    def __call__(self, url, payload, *, timeout):
        if url in self.failing_urls:
            raise WebhookDeliveryError("webhook returned 500")
        self.calls.append((url, payload))
        return 200


def make_storage(root: pathlib.Path) -> LocalObjectStorage:
    return LocalObjectStorage(
        config=ObjectStorageConfig(
            backend="local",
            bucket="test-bucket",
            root=str(root),
            prefix="",
            public_base_url="https://cdn.test",
            endpoint="",
            region="",
            access_key="",
            secret_key="",
            force_path_style=True,
        )
    )


def make_orchestrator(
    *,
    tmp_path: pathlib.Path,
    clock: FakeClock,
    adapters: dict,
    env: dict[str, str] | None = None,
    sender: RecordingSender | None = None,
) -> Orchestrator:
    settings = Settings.from_env({"CRON_SECRET": CRON_SECRET, **(env or {})})
    jobs_repos, tracks_repo, reminders_repo = build_in_memory_stores()
    return Orchestrator(
        settings=settings,
        jobs_repos=jobs_repos,
        tracks_repo=tracks_repo,
        reminders_repo=reminders_repo,
        adapters=adapters,
        storage=make_storage(tmp_path / "object_store"),
        clock=clock,
        reminder_sender=sender or RecordingSender(),
    )


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MEDIAJOBS_STORE_BACKEND", "memory")
    monkeypatch.setenv("MEDIAJOBS_OBJECT_STORAGE_BACKEND", "local")
    monkeypatch.setenv("OBJECT_STORAGE_ROOT", str(tmp_path / "env_object_store"))
    monkeypatch.delenv("MEDIAJOBS_REQUIRE_TRUESTACK", raising=False)
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("REMINDER_WEBHOOK_SECRET", raising=False)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def separation_adapter() -> ScriptedAdapter:
    return ScriptedAdapter("separation")


@pytest.fixture
def download_adapter() -> ScriptedAdapter:
    return ScriptedAdapter("download")


@pytest.fixture
def reminder_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def orchestrator(tmp_path, clock, separation_adapter, download_adapter, reminder_sender) -> Orchestrator:
    return make_orchestrator(
        tmp_path=tmp_path,
        clock=clock,
        adapters={LANE_SEPARATION: separation_adapter, LANE_DOWNLOAD: download_adapter},
        sender=reminder_sender,
    )


@pytest.fixture
def client(orchestrator) -> TestClient:
    return TestClient(create_app(orchestrator=orchestrator))


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def orchestrator_factory(tmp_path, clock, separation_adapter, download_adapter, reminder_sender):
    def _make(env: dict[str, str] | None = None) -> Orchestrator:
        return make_orchestrator(
            tmp_path=tmp_path,
            clock=clock,
            adapters={LANE_SEPARATION: separation_adapter, LANE_DOWNLOAD: download_adapter},
            env=env,
            sender=reminder_sender,
        )

    return _make


@pytest.fixture
def add_track():
    def _add(orchestrator: Orchestrator, track_id: str = "42", **fields) -> dict:
        track = {
            "id": track_id,
            "name": f"Track {track_id}",
            "source_url": f"https://example.com/audio/{track_id}.mp3",
            "source_type": "url",
            **fields,
        }
        return orchestrator.tracks_repo.add(track=track)

    return _add
