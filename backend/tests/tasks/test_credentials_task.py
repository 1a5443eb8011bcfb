from app.core.celery_app import CREDENTIAL_REFRESH_TASK, build_beat_schedule
from app.services.credentials import RefreshSummary
from app.tasks.credentials import refresh_expiring_credentials


class FakeCredentials:
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def refresh_expiring_credentials(self) -> RefreshSummary:
        if self.error:
            raise self.error
        return RefreshSummary(refreshed=2, failed=1, skipped=3)


class FakeContainer:
    def __init__(self, credentials: FakeCredentials):
        self.credentials = credentials
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def test_refresh_task_returns_summary(monkeypatch, settings):
    container = FakeContainer(FakeCredentials())
    monkeypatch.setattr("app.tasks.credentials.get_settings", lambda: settings)
    monkeypatch.setattr("app.tasks.credentials.build_container", lambda _settings: container)

    result = refresh_expiring_credentials()

    assert result == {"refreshed": 2, "failed": 1, "skipped": 3}
    assert container.closed is True


def test_refresh_task_reports_failure(monkeypatch, settings):
    container = FakeContainer(FakeCredentials(RuntimeError("db down")))
    monkeypatch.setattr("app.tasks.credentials.get_settings", lambda: settings)
    monkeypatch.setattr("app.tasks.credentials.build_container", lambda _settings: container)

    result = refresh_expiring_credentials()

    assert result == "Failed: db down"
    assert container.closed is True


def test_beat_schedule_only_in_celery_mode(make_settings):
    assert build_beat_schedule(make_settings(CREDENTIAL_REFRESH_MODE="inprocess")) == {}

    schedule = build_beat_schedule(
        make_settings(CREDENTIAL_REFRESH_MODE="celery", CREDENTIAL_REFRESH_INTERVAL_SECONDS=1740)
    )
    entry = schedule["refresh-expiring-credentials"]
    assert entry["task"] == CREDENTIAL_REFRESH_TASK
    assert entry["schedule"] == 1740
    assert entry["options"]["expires"] == 1680
