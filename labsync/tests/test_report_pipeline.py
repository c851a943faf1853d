import asyncio
from datetime import date

import httpx

from labsync.schemas.upload import UploadErrorCode, UploadSource
from labsync.services.events import SaveEvents
from labsync.services.marker_extraction import MarkerExtractionClient
from labsync.services.persistence import GroupPersistenceClient
from labsync.services.report_pipeline import LabReportPipeline, report_constraints
from labsync.services.save_orchestrator import SaveOrchestrator
from labsync.services.transport import ChunkTransport
from labsync.services.upload_engine import ChunkedUploadEngine

TODAY = date(2024, 6, 1)

MULTI_DATE_BODY = {
    "success": True,
    "markers": [],
    "dateGroups": [
        {"testDate": "01/15/2024", "markers": [{"name": "LDL", "value": 120, "unit": "mg/dL", "category": "Lipid Panel"}]},
        {"testDate": "2024-04-02", "markers": [{"name": "LDL", "value": 98, "unit": "mg/dL", "category": "Lipid Panel"}]},
        {"testDate": "unknown", "markers": [{"name": "TSH", "value": 2.0, "unit": "mIU/L", "category": "Thyroid"}]},
    ],
    "hasMultipleDates": True,
}


def _fake_text(data, filename, content_type):
    return "LDL 120 mg/dL", "pdf"


def _extractor(body, status=200):
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(status, json=body)))
    return MarkerExtractionClient(http, url="http://extractor/api/pdf")


def _pipeline(asgi_transport, sleeps, extractor):
    http = httpx.AsyncClient(transport=asgi_transport, base_url="http://testserver")
    engine = ChunkedUploadEngine(
        ChunkTransport(http, base_url="http://testserver"),
        chunk_size=8,
        constraints=report_constraints(),
        sleep=sleeps,
    )
    return LabReportPipeline(engine, extractor, text_extractor=_fake_text), http


def _pdf(size=20):
    return UploadSource(name="labs.pdf", type="application/pdf", data=b"%PDF-1.4" + b"x" * (size - 8))


def test_upload_extract_reconcile_and_save(asgi_transport, sleeps, upload_root, client):
    pipeline, http = _pipeline(asgi_transport, sleeps, _extractor(MULTI_DATE_BODY))
    events = SaveEvents()
    changed = []
    events.on_data_changed(changed.append)

    async def go():
        result = await pipeline.process(_pdf(), today=TODAY)
        store = GroupPersistenceClient(http, base_url="http://testserver", user_id="user-1")
        report = await SaveOrchestrator(store, events).save(result.extraction)
        await http.aclose()
        return result, report

    result, report = asyncio.run(go())

    assert result.ok
    assert result.file.status == "completed"
    assert result.text_source == "pdf"
    assert result.extraction.has_multiple_dates is True
    assert result.extraction.dates == ["2024-06-01", "2024-04-02", "2024-01-15"]
    assert [w.code for w in result.warnings] == [UploadErrorCode.INVALID_DATE]
    assert len(list((upload_root / "temp").glob("labs.pdf.chunk*"))) == 3

    assert report.saved == 3
    assert len(changed) == 1
    stored = client.get("/api/blood-markers", headers={"X-User-Id": "user-1"}).json()["data"]
    assert [e["date"] for e in stored] == ["2024-06-01", "2024-04-02", "2024-01-15"]


def test_single_date_report_uses_extracted_test_date(asgi_transport, sleeps):
    body = {
        "success": True,
        "markers": [{"name": "Glucose", "value": 92, "unit": "mg/dL"}],
        "testDate": "March 3, 2024",
        "dateGroups": [],
        "hasMultipleDates": False,
    }
    pipeline, http = _pipeline(asgi_transport, sleeps, _extractor(body))
    result = asyncio.run(pipeline.process(_pdf(), today=TODAY))
    assert result.ok
    assert result.extraction.has_multiple_dates is False
    assert result.extraction.dates == ["2024-03-03"]


def test_rejected_file_type_never_reaches_extractor(asgi_transport, sleeps):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=MULTI_DATE_BODY)

    extractor = MarkerExtractionClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)), url="http://extractor/api/pdf"
    )
    pipeline, _ = _pipeline(asgi_transport, sleeps, extractor)
    source = UploadSource(name="notes.txt", type="text/plain", data=b"hello")
    result = asyncio.run(pipeline.process(source, today=TODAY))
    assert not result.ok
    assert result.error.code == UploadErrorCode.VALIDATION_FAILED
    assert calls == []


def test_expired_session_is_reported(asgi_transport, sleeps):
    pipeline, _ = _pipeline(asgi_transport, sleeps, _extractor({"error": "Unauthorized"}, status=401))
    result = asyncio.run(pipeline.process(_pdf(), today=TODAY))
    assert not result.ok
    assert result.error.code == UploadErrorCode.MARKER_EXTRACTION_FAILED
    assert result.error.details == {"session_expired": True}
    assert result.file.status == "completed"
