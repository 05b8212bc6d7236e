from datetime import datetime, timezone

import pytest

from app.errors import RecordStoreError, ValidationError
from app.schemas.job import (
    EnrichedField,
    FailureResult,
    JobKind,
    LaunchParams,
    SourceAttribution,
    SuccessResult,
)
from app.schemas.records import Record
from app.services.confirmation import (
    confirm_enrichment,
    confirm_generation,
    drafts,
    get_preview,
    merge_enrichment,
)

NOW = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


def _success(recordId, **values):
    return SuccessResult(
        recordId=recordId,
        fields=[EnrichedField(name=k, value=v, confidence=0.9) for k, v in values.items()],
        sources=[
            SourceAttribution(field=k, url="https://example.com", confidence=0.9)
            for k, v in values.items() if v is not None
        ],
    )


def _finished_job(jobs, results, kind=JobKind.generation):
    job = jobs.create(
        ownerId="user_1",
        tableId="tbl_1",
        organizationId="org_1",
        params=LaunchParams(
            mode=kind,
            dataDescription="IT companies",
            rowCount=len(results),
            recordIds=[r.recordId for r in results] if kind == JobKind.enrichment else [],
        ),
    )
    jobs.start(job.id)
    for result in results:
        jobs.append_result(job.id, result)
    jobs.complete(job.id)
    return jobs.get(job.id)


class TestMerge:
    def test_only_enriched_keys_change(self):
        record = Record(id="rec_1", data={"a": 1, "b": 2})
        patch = merge_enrichment(record, _success("rec_1", b=3), "job_1", NOW)

        data = dict(patch["data"])
        meta = data.pop("enrichment_metadata")
        assert data == {"a": 1, "b": 3}
        assert meta["jobId"] == "job_1"
        assert meta["enrichedAt"] == NOW.isoformat()
        assert meta["sources"][0]["field"] == "b"
        assert record.data == {"a": 1, "b": 2}

    def test_null_values_are_a_no_op(self):
        record = Record(id="rec_1", email="old@example.com", data={"industry": "Retail"})
        patch = merge_enrichment(record, _success("rec_1", industry=None, email=None), "job_1", NOW)

        assert "email" not in patch
        assert patch["data"]["industry"] == "Retail"

    def test_direct_fields_go_top_level(self):
        record = Record(id="rec_1", data={})
        patch = merge_enrichment(
            record, _success("rec_1", email="hi@acme.example", phone="03-0000-0000", industry="Robotics"),
            "job_1", NOW,
        )

        assert patch["email"] == "hi@acme.example"
        assert patch["phone"] == "03-0000-0000"
        assert "email" not in patch["data"]
        assert patch["data"]["industry"] == "Robotics"


class TestPreview:
    def test_only_successful_results_in_order(self, jobs):
        job = _finished_job(jobs, [
            _success("0", name="Alpha"),
            FailureResult(recordId="1", error="bad output"),
            _success("2", name="Gamma"),
        ])

        preview = get_preview(job)

        assert [r.index for r in preview.records] == [0, 2]
        assert preview.records[1].data == {"name": "Gamma"}
        assert preview.job.totalRecords == 3
        assert preview.job.status.value == "completed"

    def test_drafts_keep_failures_with_their_error(self, jobs):
        job = _finished_job(jobs, [
            _success("0", name="Alpha"),
            FailureResult(recordId="1", error="bad output"),
        ])

        result = drafts(job)

        assert [d.status for d in result] == ["success", "failed"]
        assert result[1].error == "bad output"
        assert result[0].generatedData == {"name": "Alpha"}

    def test_running_job_has_no_preview(self, jobs):
        job = jobs.create(
            ownerId="user_1", tableId="tbl_1", organizationId="org_1",
            params=LaunchParams(dataDescription="x", rowCount=1),
        )
        with pytest.raises(ValidationError):
            get_preview(job)


class TestConfirmGeneration:
    def test_unknown_indices_are_ignored(self, jobs, store):
        job = _finished_job(jobs, [
            _success("0", name="Alpha", email="a@alpha.example"),
            FailureResult(recordId="1", error="bad output"),
            _success("2", name="Gamma"),
        ])

        inserted = confirm_generation(job, [0, 1, 2, 99], store)

        assert inserted == 2
        rows = [r for r in store.records.values() if r.metadata.get("jobId") == job.id]
        assert sorted(r.data["name"] for r in rows) == ["Alpha", "Gamma"]

        alpha = next(r for r in rows if r.data["name"] == "Alpha")
        assert alpha.email == "a@alpha.example"
        assert alpha.tableId == "tbl_1"
        assert alpha.organizationId == "org_1"
        assert alpha.metadata["aiGenerated"] is True
        assert alpha.metadata["sources"][0]["url"] == "https://example.com"

    def test_empty_selection_inserts_nothing(self, jobs, store):
        job = _finished_job(jobs, [_success("0", name="Alpha")])

        assert confirm_generation(job, [], store) == 0
        assert store.records == {}

    def test_enrichment_job_cannot_be_confirmed_as_generation(self, jobs, store):
        job = _finished_job(jobs, [_success("rec_1", industry="x")], kind=JobKind.enrichment)

        with pytest.raises(ValidationError):
            confirm_generation(job, [0], store)


class TestConfirmEnrichment:
    def test_counts_each_record_independently(self, jobs, store, seeded_records):
        job = _finished_job(jobs, [
            _success("rec_1", industry="Software"),
            FailureResult(recordId="rec_2", error="bad output"),
            _success("rec_3", industry="Retail", email="info@three.example"),
            _success("rec_gone", industry="Nothing"),
        ], kind=JobKind.enrichment)

        response = confirm_enrichment(job, ["rec_1", "rec_2", "rec_3", "rec_gone", "rec_4"], store)

        assert response.successCount == 2
        assert response.failureCount == 3
        assert response.totalProcessed == 5
        assert response.success is False

        first = store.get_record("rec_1")
        assert first.name == "Company 1"
        assert first.data["industry"] == "Software"
        assert first.data["enrichment_metadata"]["jobId"] == job.id

        third = store.get_record("rec_3")
        assert third.email == "info@three.example"
        assert "email" not in third.data

        assert store.get_record("rec_2").data == {}

    def test_store_error_counts_as_failure(self, jobs, store, seeded_records, monkeypatch):
        job = _finished_job(jobs, [
            _success("rec_1", industry="Software"),
            _success("rec_2", industry="Retail"),
        ], kind=JobKind.enrichment)

        original = store.update_record

        def flaky(recordId, patch):
            if recordId == "rec_1":
                raise RecordStoreError("write conflict")
            return original(recordId, patch)

        monkeypatch.setattr(store, "update_record", flaky)

        response = confirm_enrichment(job, ["rec_1", "rec_2"], store)

        assert (response.successCount, response.failureCount) == (1, 1)
        assert store.get_record("rec_2").data["industry"] == "Retail"

    def test_read_error_counts_as_failure(self, jobs, store, seeded_records, monkeypatch):
        job = _finished_job(jobs, [
            _success("rec_1", industry="Software"),
            _success("rec_2", industry="Retail"),
            _success("rec_3", industry="Finance"),
        ], kind=JobKind.enrichment)

        original = store.get_record

        def flaky(recordId):
            if recordId == "rec_2":
                raise RecordStoreError("transient read failure")
            return original(recordId)

        monkeypatch.setattr(store, "get_record", flaky)

        response = confirm_enrichment(job, ["rec_1", "rec_2", "rec_3"], store)

        assert (response.successCount, response.failureCount) == (2, 1)
        assert response.totalProcessed == 3
        assert response.success is False
        assert original("rec_1").data["industry"] == "Software"
        assert original("rec_3").data["industry"] == "Finance"

    def test_unexpected_error_counts_as_failure(self, jobs, store, seeded_records, monkeypatch):
        job = _finished_job(jobs, [
            _success("rec_1", industry="Software"),
            _success("rec_2", industry="Retail"),
        ], kind=JobKind.enrichment)

        original = store.update_record

        def broken(recordId, patch):
            if recordId == "rec_1":
                raise KeyError("data")
            return original(recordId, patch)

        monkeypatch.setattr(store, "update_record", broken)

        response = confirm_enrichment(job, ["rec_1", "rec_2"], store)

        assert (response.successCount, response.failureCount) == (1, 1)
