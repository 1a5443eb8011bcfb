"""
访问审计测试

- 请求摘要格式（查询串、请求体截断、二进制/超大请求体）
- 错误转发关联：窗口内回写失败，窗口外不回写，条目只使用一次
- 噪音路径与错误转发路径不单独记录
"""
import pytest
from sqlalchemy import select

from app.models import AccessLog
from app.services.access.audit import AccessAuditor, describe_request


class FakeClock:
    def __init__(self, start: float = 500.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auditor(session_factory, clock) -> AccessAuditor:
    return AccessAuditor(session_factory, correlation_window_seconds=10, clock=clock)


async def _passed_of(session_factory, record_id) -> bool:
    async with session_factory() as session:
        row = (await session.execute(select(AccessLog).where(AccessLog.id == record_id))).scalar_one()
        return row.passed


class TestDescribeRequest:
    def test_get_with_query(self):
        assert describe_request("get", "/api/v1/items", "a=1&b=2") == "GET /api/v1/items?a=1&b=2"

    def test_get_ignores_body(self):
        assert describe_request("GET", "/x", body=b"ignored") == "GET /x"

    def test_post_with_json_body(self):
        summary = describe_request(
            "POST",
            "/api/v1/tweets",
            content_type="application/json",
            content_length=15,
            body=b'{"text":"hi"}',
        )
        assert summary == 'POST /api/v1/tweets | Body: {"text":"hi"}'

    def test_long_body_is_truncated(self):
        summary = describe_request("PUT", "/x", content_type="text/plain", body=b"a" * 1500)
        assert summary == "PUT /x | Body: " + "a" * 1024 + "...[TRUNCATED]"

    def test_multipart_is_not_read(self):
        summary = describe_request(
            "POST", "/upload", content_type="multipart/form-data; boundary=x", content_length=10
        )
        assert summary == "POST /upload | Body: [BINARY_DATA]"

    def test_large_body_reports_size(self):
        summary = describe_request("POST", "/x", content_type="application/json", content_length=4096, body=None)
        assert summary == "POST /x | Body: [LARGE_BODY:4096bytes]"

    def test_read_error(self):
        summary = describe_request("PATCH", "/x", content_type="application/json", content_length=10, body=None)
        assert summary == "PATCH /x | Body: [READ_ERROR]"

    def test_summary_is_capped(self):
        summary = describe_request("GET", "/x", "q=" + "z" * 5000)
        assert len(summary) == 2048


@pytest.mark.asyncio
async def test_record_persists_entry(auditor, session_factory):
    record_id = await auditor.record("10.0.0.1", "/api/v1/items", "GET /api/v1/items", True)

    assert record_id is not None
    assert await _passed_of(session_factory, record_id) is True
    assert auditor.recent_entry("10.0.0.1").record_id == record_id


@pytest.mark.asyncio
async def test_noise_and_error_paths_are_not_recorded(auditor, session_factory):
    assert await auditor.record("10.0.0.1", "/favicon.ico", "GET /favicon.ico", True) is None
    assert await auditor.record("10.0.0.1", "/error", "GET /error", True) is None

    async with session_factory() as session:
        rows = (await session.execute(select(AccessLog))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
async def test_disabled_auditor_records_nothing(session_factory):
    auditor = AccessAuditor(session_factory, enabled=False)
    assert await auditor.record("10.0.0.1", "/x", "GET /x", True) is None


@pytest.mark.asyncio
async def test_error_within_window_marks_failed(auditor, session_factory, clock):
    record_id = await auditor.record("10.0.0.1", "/api/v1/items", "GET /api/v1/items", True)

    clock.advance(5)
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=True) is True
    assert await _passed_of(session_factory, record_id) is False
    assert auditor.recent_entry("10.0.0.1") is None


@pytest.mark.asyncio
async def test_error_outside_window_keeps_record(auditor, session_factory, clock):
    record_id = await auditor.record("10.0.0.1", "/api/v1/items", "GET /api/v1/items", True)

    clock.advance(15)
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=True) is False
    assert await _passed_of(session_factory, record_id) is True
    # 过期条目同样被移除
    assert auditor.recent_entry("10.0.0.1") is None


@pytest.mark.asyncio
async def test_error_exactly_at_window_does_not_mark(auditor, session_factory, clock):
    record_id = await auditor.record("10.0.0.1", "/x", "GET /x", True)

    clock.advance(10)
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=True) is False
    assert await _passed_of(session_factory, record_id) is True


@pytest.mark.asyncio
async def test_error_without_exception_is_ignored(auditor, session_factory, clock):
    record_id = await auditor.record("10.0.0.1", "/x", "GET /x", True)

    clock.advance(1)
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=False) is False
    assert await _passed_of(session_factory, record_id) is True
    assert auditor.recent_entry("10.0.0.1") is not None


@pytest.mark.asyncio
async def test_correlation_is_per_client(auditor, session_factory, clock):
    first = await auditor.record("10.0.0.1", "/x", "GET /x", True)
    await auditor.record("10.0.0.2", "/y", "GET /y", True)

    assert await auditor.correlate_error_dispatch("10.0.0.3", exception_triggered=True) is False
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=True) is True
    assert await auditor.correlate_error_dispatch("10.0.0.1", exception_triggered=True) is False
    assert await _passed_of(session_factory, first) is False
    assert auditor.recent_entry("10.0.0.2") is not None


@pytest.mark.asyncio
async def test_mark_failed_targets_given_record(auditor, session_factory):
    first = await auditor.record("10.0.0.1", "/x", "GET /x", True)
    second = await auditor.record("10.0.0.1", "/y", "GET /y", True)

    assert await auditor.mark_failed("10.0.0.1", first) is True
    assert await _passed_of(session_factory, first) is False
    assert await _passed_of(session_factory, second) is True
    # 最近条目属于另一条记录，保留
    assert auditor.recent_entry("10.0.0.1").record_id == second

    assert await auditor.mark_failed("10.0.0.1", None) is False
