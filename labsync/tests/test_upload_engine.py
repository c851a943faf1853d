import asyncio

import httpx

from labsync.schemas.upload import UploadConstraints, UploadErrorCode
from labsync.services.upload_engine import ChunkedUploadEngine, percentage, validate_file
from labsync.utils.errors import ChunkTransmissionError


class FakeTransport:
    """Records every send; ``fail`` maps chunk index -> number of failures left."""

    def __init__(self, fail=None, exc=None):
        self.fail = dict(fail or {})
        self.exc = exc
        self.sent = []
        self.attempts = []

    async def send(self, chunk, file_name):
        self.attempts.append(chunk.index)
        if self.fail.get(chunk.index, 0) > 0:
            self.fail[chunk.index] -= 1
            if self.exc is not None:
                raise self.exc
            raise ChunkTransmissionError("server hiccup", status_code=503, chunk_index=chunk.index)
        self.sent.append((chunk.index, chunk.data, file_name))

    async def aclose(self):
        pass


def _engine(transport, sleeps, **kwargs):
    kwargs.setdefault("chunk_size", 4)
    kwargs.setdefault("constraints", UploadConstraints(max_file_size=1024, allowed_types=["*/*"]))
    return ChunkedUploadEngine(transport, sleep=sleeps, **kwargs)


def test_three_chunks_with_transient_failures_complete(sleeps, make_source):
    transport = FakeTransport(fail={1: 2})
    completed, errors = [], []
    engine = _engine(
        transport, sleeps,
        on_complete=completed.append,
        on_error=errors.append,
    )
    source = make_source(size=10)

    result = asyncio.run(engine.upload(source))

    assert result.status == "completed"
    assert result.progress == 100
    assert transport.attempts == [0, 1, 1, 1, 2]
    assert [i for i, _, _ in transport.sent] == [0, 1, 2]
    assert b"".join(d for _, d, _ in transport.sent) == source.data
    assert sleeps.calls == [1.0, 2.0]
    assert len(completed) == 1 and completed[0].id == result.id
    assert errors == []


def test_progress_reports_each_chunk(sleeps, make_source):
    seen = []
    engine = _engine(FakeTransport(), sleeps, on_progress=lambda fid, p: seen.append((p.loaded, p.total, p.percentage)))
    asyncio.run(engine.upload(make_source(size=10)))
    assert seen == [(4, 10, 40), (8, 10, 80), (10, 10, 100)]


def test_last_chunk_moves_file_to_processing_before_completed(sleeps, make_source):
    statuses = []
    engine = _engine(FakeTransport(), sleeps, on_state_change=lambda f: statuses.append(f.status))
    asyncio.run(engine.upload(make_source(size=10)))
    assert statuses[0] == "pending"
    assert "processing" in statuses
    assert statuses.index("processing") < statuses.index("completed")
    assert statuses[-1] == "completed"


def test_exhausted_retries_fail_the_file(sleeps, make_source):
    transport = FakeTransport(fail={1: 3})
    errors = []
    engine = _engine(transport, sleeps, on_error=errors.append)

    result = asyncio.run(engine.upload(make_source(size=10)))

    assert result.status == "error"
    assert result.error == "server hiccup"
    assert transport.attempts == [0, 1, 1, 1]
    assert len(errors) == 1
    assert errors[0].code == UploadErrorCode.UPLOAD_FAILED
    assert engine.state.status == "error"
    assert engine.state.error.code == UploadErrorCode.UPLOAD_FAILED


def test_network_failure_is_classified(sleeps, make_source):
    transport = FakeTransport(fail={0: 3}, exc=httpx.ReadTimeout("timed out"))
    errors = []
    engine = _engine(transport, sleeps, on_error=errors.append)
    result = asyncio.run(engine.upload(make_source(size=4)))
    assert result.status == "error"
    assert errors[0].code == UploadErrorCode.NETWORK_ERROR


def test_invalid_file_is_never_uploaded(sleeps, make_source):
    transport = FakeTransport()
    errors = []
    engine = _engine(
        transport, sleeps,
        constraints=UploadConstraints(max_file_size=5, allowed_types=["*/*"]),
        on_error=errors.append,
    )
    result = asyncio.run(engine.upload(make_source(size=10)))
    assert result is None
    assert transport.attempts == []
    assert engine.files == []
    assert len(errors) == 1
    assert errors[0].code == UploadErrorCode.VALIDATION_FAILED
    assert engine.state.error.code == UploadErrorCode.VALIDATION_FAILED


def test_retry_restarts_from_first_chunk(sleeps, make_source):
    transport = FakeTransport(fail={2: 3})
    engine = _engine(transport, sleeps)
    first = asyncio.run(engine.upload(make_source(size=10)))
    assert first.status == "error"

    transport.attempts.clear()
    transport.sent.clear()
    again = asyncio.run(engine.retry(first.id))

    assert again.status == "completed"
    assert again.error is None
    assert transport.attempts == [0, 1, 2]


def test_retry_unknown_file_returns_none(sleeps):
    engine = _engine(FakeTransport(), sleeps)
    assert asyncio.run(engine.retry("missing")) is None


def test_cancel_mid_upload_stops_sending(sleeps, make_source):
    transport = FakeTransport()
    engine = _engine(transport, sleeps)

    def cancel_after_first(file_id, progress):
        if progress.loaded == 4:
            engine.cancel(file_id)

    engine._on_progress = cancel_after_first
    result = asyncio.run(engine.upload(make_source(size=10)))

    assert result.status == "error"
    assert result.error == "Upload cancelled"
    assert transport.attempts == [0]
    assert engine.state.status == "error"


def test_cancel_unknown_file():
    engine = ChunkedUploadEngine(FakeTransport())
    assert engine.cancel("nope") is False


def test_records_are_copies(sleeps, make_source):
    engine = _engine(FakeTransport(), sleeps)
    result = asyncio.run(engine.upload(make_source(size=4)))
    snapshot = engine.get(result.id)
    snapshot.status = "error"
    assert engine.get(result.id).status == "completed"


def test_clear_drops_everything(sleeps, make_source):
    engine = _engine(FakeTransport(), sleeps)
    asyncio.run(engine.upload_many([make_source(size=4), make_source(size=6)]))
    assert len(engine.files) == 2
    assert engine.state.status == "completed"
    engine.clear()
    assert engine.files == []
    assert engine.state.status == "idle"


def test_validate_file_rules(make_source):
    constraints = UploadConstraints(max_file_size=2 * 1024 * 1024, allowed_types=["application/pdf", "image/*"])
    assert validate_file(make_source(size=10), constraints).valid
    assert validate_file(make_source(size=10, name="a.png", media_type="image/png"), constraints).valid

    too_big = validate_file(make_source(size=3 * 1024 * 1024), constraints)
    assert not too_big.valid
    assert too_big.reason == "File size exceeds maximum allowed size of 2MB"

    wrong_type = validate_file(make_source(size=10, name="a.txt", media_type="text/plain"), constraints)
    assert not wrong_type.valid
    assert "text/plain" in wrong_type.reason
    assert "application/pdf, image/*" in wrong_type.reason


def test_percentage_rounds_half_up():
    assert percentage(1, 8) == 13
    assert percentage(0, 10) == 0
    assert percentage(10, 10) == 100
    assert percentage(0, 0) == 100
