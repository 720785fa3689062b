import threading
from datetime import date, timedelta

import pytest
from sqlalchemy import update

from healthwallet.models.health_record import HealthRecord, RecordStatus, utcnow
from healthwallet.models.user import UserProfile
from healthwallet.schemas.records import BiomarkerEdit
from healthwallet.services.record_pipeline import RecordPipeline
from healthwallet.services.repository import RecordRepository
from healthwallet.utils.encryption import decrypt_text
from healthwallet.utils.exceptions import (
    ConcurrencyConflict,
    ExtractionError,
    InvalidTransition,
    RecordNotFound,
    ScoringPreconditionError,
)
from healthwallet.tests.helpers import USER_ID, FakeExtractor, report


def _reload(db, record_id):
    db.expire_all()
    return db.get(HealthRecord, record_id)


def test_enqueue_starts_in_uploading(db, make_pipeline):
    record = make_pipeline().enqueue(db, USER_ID, "/tmp/x.txt", "x.txt", record_date=date(2024, 1, 2))
    assert record.status == RecordStatus.UPLOADING
    assert record.version == 1
    assert record.biomarkers == []


def test_claim_is_exclusive(make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline()
    assert pipeline.claim(record.id) is True
    assert pipeline.claim(record.id) is False


def test_concurrent_claims_have_one_winner(file_sessions):
    Session = file_sessions
    with Session() as s:
        record_id = RecordRepository(s).create(USER_ID, "/tmp/race.txt", "race.txt").id

    pipeline = RecordPipeline(session_factory=Session, extractor_factory=FakeExtractor)
    barrier = threading.Barrier(8)
    results = []

    def contender():
        barrier.wait()
        results.append(pipeline.claim(record_id))

    threads = [threading.Thread(target=contender) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    with Session() as s:
        assert s.get(HealthRecord, record_id).status == RecordStatus.PROCESSING


def test_process_moves_to_pending_review_with_classified_biomarkers(db, make_record, make_pipeline):
    record = make_record(text="raw lab text")
    fake = FakeExtractor([report(("LDL", 150, "mg/dL", 0.9), ("Omega-3 Index", 8, "%", 0.8))])
    pipeline = make_pipeline(fake)
    assert pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.PENDING_REVIEW

    saved = _reload(db, record.id)
    assert saved.status == RecordStatus.PENDING_REVIEW
    assert [b["name"] for b in saved.biomarkers] == ["LDL Cholesterol", "Omega-3 Index"]
    assert [b["status"] for b in saved.biomarkers] == ["high", None]
    assert saved.error_message is None
    assert fake.calls == ["raw lab text"]


def test_raw_text_is_stored_encrypted(db, make_record, make_pipeline):
    record = make_record(text="Vitamin D 24 ng/mL confidential")
    pipeline = make_pipeline(FakeExtractor([report(("Vitamin D", 24, "ng/mL"))]))
    pipeline.claim(record.id)
    pipeline.process(record.id)

    saved = _reload(db, record.id)
    assert "confidential" not in saved.raw_text_encrypted
    assert decrypt_text(saved.raw_text_encrypted) == "Vitamin D 24 ng/mL confidential"
    assert saved.parsed_data["adapter"] == "fake"


def test_zero_candidates_fail_the_record(db, make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline(FakeExtractor([]))
    pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.FAILED

    saved = _reload(db, record.id)
    assert saved.status == RecordStatus.FAILED
    assert saved.error_message
    assert saved.biomarkers == []


@pytest.mark.parametrize("message", ["Extraction timed out after 60s", "Extraction provider returned HTTP 500"])
def test_adapter_errors_fail_the_record(db, make_record, make_pipeline, message):
    record = make_record()
    pipeline = make_pipeline(FakeExtractor(error=ExtractionError(message)))
    pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.FAILED
    assert _reload(db, record.id).error_message == message


def test_unreadable_document_fails_the_record(db, make_record, make_pipeline):
    record = make_record(text="   ")
    fake = FakeExtractor([report(("LDL", 150, "mg/dL"))])
    pipeline = make_pipeline(fake)
    pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.FAILED
    assert _reload(db, record.id).error_message.startswith("Unreadable document")
    assert fake.calls == []


def test_unexpected_errors_leave_record_processing(db, make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline(FakeExtractor(error=RuntimeError("bug")))
    pipeline.claim(record.id)
    with pytest.raises(RuntimeError):
        pipeline.process(record.id)
    assert _reload(db, record.id).status == RecordStatus.PROCESSING


def test_process_requires_claim(make_record, make_pipeline):
    record = make_record()
    with pytest.raises(InvalidTransition):
        make_pipeline().process(record.id)


def test_run_once_processes_oldest_uploads(db, make_record, make_pipeline):
    ids = [make_record().id for _ in range(3)]
    pipeline = make_pipeline(FakeExtractor([report(("HDL", 65, "mg/dL"))]))
    assert pipeline.run_once(limit=2) == 2
    statuses = sorted(_reload(db, i).status for i in ids)
    assert statuses == [RecordStatus.PENDING_REVIEW, RecordStatus.PENDING_REVIEW, RecordStatus.UPLOADING]
    assert pipeline.run_once(limit=10) == 1
    assert pipeline.run_once(limit=10) == 0


def test_multi_report_document_is_split(db, make_record, make_pipeline):
    record = make_record(filename="history.txt")
    fake = FakeExtractor([
        report(("HDL", 40, "mg/dL"), record_date=date(2023, 1, 5)),
        report(("HDL", 55, "mg/dL"), record_date=date(2024, 12, 1)),
        report(("HDL", 60, "mg/dL")),
    ])
    pipeline = make_pipeline(fake)
    pipeline.claim(record.id)
    pipeline.process(record.id)

    db.expire_all()
    items, total = RecordRepository(db).list_for_user(USER_ID)
    assert total == 3
    assert all(r.status == RecordStatus.PENDING_REVIEW for r in items)
    titles = sorted(r.original_filename for r in items)
    assert titles == ["history.txt", "history.txt (2024-12-01)", "history.txt (Part 3)"]
    assert _reload(db, record.id).record_date == date(2023, 1, 5)
    dates = {r.original_filename: r.record_date for r in items}
    assert dates["history.txt (2024-12-01)"] == date(2024, 12, 1)
    assert dates["history.txt (Part 3)"] is None


def test_auto_approve_completes_confident_extractions(db, make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline(
        FakeExtractor([report(("HDL", 65, "mg/dL", 0.97), ("LDL", 90, "mg/dL", 0.95))]),
        auto_approve_confidence=0.9,
    )
    pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.COMPLETED
    assert _reload(db, record.id).wellness_score == 100


def test_auto_approve_skips_low_confidence(db, make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline(
        FakeExtractor([report(("HDL", 65, "mg/dL", 0.97), ("LDL", 90, "mg/dL", 0.5))]),
        auto_approve_confidence=0.9,
    )
    pipeline.claim(record.id)
    assert pipeline.process(record.id) == RecordStatus.PENDING_REVIEW


def test_verify_edits_and_finalizes(db, pending_record, make_pipeline):
    record_id = pending_record()
    db.add(UserProfile(user_id=USER_ID, date_of_birth=date(1980, 1, 1), dietary_preference="vegan"))
    db.commit()

    result = make_pipeline().verify(
        db,
        USER_ID,
        record_id,
        [BiomarkerEdit(name="vitamin d", value="45"), BiomarkerEdit(name="Ferritin", value=30)],
        approved=True,
    )
    record = result.record
    assert record.status == RecordStatus.COMPLETED
    vit_d = next(b for b in record.biomarkers if b["name"] == "Vitamin D")
    assert vit_d["value"] == 45.0
    assert vit_d["original_value"] == 24.0
    assert vit_d["verified"] is True
    assert vit_d["status"] == "optimal"
    assert [r.name for r in result.rejected_edits] == ["Ferritin"]
    # 2 of 3 optimal
    assert record.wellness_score == 77
    assert record.health_age is not None
    assert record.key_findings == ["LDL Cholesterol is high"]
    assert {f["targets"][0] for f in record.food_recommendations} == {"LDL Cholesterol"}
    assert any(f["food"] == "Ground Flaxseed" for f in record.food_recommendations)


def test_verify_rejects_non_numeric_values_per_edit(db, pending_record, make_pipeline):
    record_id = pending_record()
    result = make_pipeline().verify(
        db,
        USER_ID,
        record_id,
        [BiomarkerEdit(name="LDL", value="lots"), BiomarkerEdit(name="HDL", value=float("inf")), BiomarkerEdit(name="HDL", value=True)],
        approved=False,
    )
    assert len(result.rejected_edits) == 3
    assert result.record.status == RecordStatus.PENDING_REVIEW
    ldl = next(b for b in result.record.biomarkers if b["name"] == "LDL Cholesterol")
    assert ldl["value"] == 150.0
    assert ldl["verified"] is False


def test_verify_without_approval_stays_pending_and_bumps_version(db, pending_record, make_pipeline):
    record_id = pending_record()
    before = _reload(db, record_id).version
    result = make_pipeline().verify(db, USER_ID, record_id, [BiomarkerEdit(name="HDL")], approved=False)
    assert result.record.status == RecordStatus.PENDING_REVIEW
    assert result.record.version == before + 1
    hdl = next(b for b in result.record.biomarkers if b["name"] == "HDL Cholesterol")
    assert hdl["verified"] is True
    assert hdl["original_value"] is None


def test_verify_with_stale_version_conflicts(db, pending_record, make_pipeline):
    record_id = pending_record()
    version = _reload(db, record_id).version
    with pytest.raises(ConcurrencyConflict):
        make_pipeline().verify(db, USER_ID, record_id, [], approved=False, expected_version=version - 1)


def test_conditional_write_detects_concurrent_change(db, pending_record):
    record_id = pending_record()
    version = _reload(db, record_id).version
    # another request got there first
    db.execute(update(HealthRecord).where(HealthRecord.id == record_id).values(version=version + 1))
    db.commit()
    with pytest.raises(ConcurrencyConflict):
        RecordRepository(db).commit_verification(
            USER_ID, record_id, version, [RecordStatus.PENDING_REVIEW], {"status": RecordStatus.COMPLETED}
        )


def test_verify_only_on_pending_review(db, make_record, make_pipeline):
    record = make_record()
    with pytest.raises(InvalidTransition):
        make_pipeline().verify(db, USER_ID, record.id, [], approved=True)


def test_verify_is_scoped_to_owner(db, pending_record, make_pipeline):
    record_id = pending_record()
    with pytest.raises(RecordNotFound):
        make_pipeline().verify(db, "someone-else", record_id, [], approved=True)


def test_finalize_is_idempotent(db, pending_record, make_pipeline):
    record_id = pending_record()
    pipeline = make_pipeline()
    first = pipeline.finalize(db, USER_ID, record_id)
    snapshot = (first.status, first.version, first.wellness_score, first.summary, first.correlations)
    second = pipeline.finalize(db, USER_ID, record_id)
    assert (second.status, second.version, second.wellness_score, second.summary, second.correlations) == snapshot
    assert second.wellness_score == 53


def test_finalize_recomputes_when_profile_changes(db, pending_record, make_pipeline):
    record_id = pending_record()
    pipeline = make_pipeline()
    first = pipeline.finalize(db, USER_ID, record_id)
    assert first.health_age is None
    first_version = first.version
    # born on Jan 1st: exactly 40 all year round
    db.add(UserProfile(user_id=USER_ID, date_of_birth=date(date.today().year - 40, 1, 1)))
    db.commit()
    second = pipeline.finalize(db, USER_ID, record_id)
    assert second.health_age == 39
    assert second.version == first_version + 1


def test_finalize_without_biomarkers_is_rejected(db, make_record):
    record = make_record()
    repo = RecordRepository(db)
    repo.claim(record.id)
    repo.store_extraction(record.id, [])
    with pytest.raises(ScoringPreconditionError):
        RecordPipeline(session_factory=lambda: db).finalize(db, USER_ID, record.id)
    saved = _reload(db, record.id)
    assert saved.status == RecordStatus.PENDING_REVIEW
    assert saved.wellness_score is None


def test_finalize_rejects_failed_records(db, make_record, make_pipeline):
    record = make_record()
    pipeline = make_pipeline(FakeExtractor([]))
    pipeline.claim(record.id)
    pipeline.process(record.id)
    with pytest.raises(InvalidTransition):
        pipeline.finalize(db, USER_ID, record.id)


def test_sweep_fails_only_stale_processing_records(db, make_record, make_pipeline):
    stale = make_record()
    fresh = make_record()
    waiting = make_record()
    pipeline = make_pipeline()
    pipeline.claim(stale.id)
    pipeline.claim(fresh.id)
    db.execute(
        update(HealthRecord)
        .where(HealthRecord.id == stale.id)
        .values(updated_at=utcnow() - timedelta(hours=2))
    )
    db.commit()

    failed = pipeline.sweep_stale(max_age_seconds=900)
    assert failed == [stale.id]
    assert _reload(db, stale.id).status == RecordStatus.FAILED
    assert _reload(db, stale.id).error_message == "Processing timed out"
    assert _reload(db, fresh.id).status == RecordStatus.PROCESSING
    assert _reload(db, waiting.id).status == RecordStatus.UPLOADING


def test_sweep_spares_records_touched_after_the_scan(db, make_record, make_pipeline, monkeypatch):
    record = make_record()
    make_pipeline().claim(record.id)
    db.execute(
        update(HealthRecord)
        .where(HealthRecord.id == record.id)
        .values(updated_at=utcnow() - timedelta(hours=2))
    )
    db.commit()

    repo = RecordRepository(db)
    real_mark_failed = repo.mark_failed

    def worker_writes_first(record_id, message, **kwargs):
        # the worker stores raw text between the sweep's select and its update
        assert repo.store_raw_text(record_id, "token")
        return real_mark_failed(record_id, message, **kwargs)

    monkeypatch.setattr(repo, "mark_failed", worker_writes_first)
    assert repo.sweep_stale(max_age_seconds=900) == []
    assert _reload(db, record.id).status == RecordStatus.PROCESSING


def test_every_mutation_bumps_version_and_updated_at(db, make_record, make_pipeline):
    record = make_record()
    created = _reload(db, record.id)
    v0, t0, c0 = created.version, created.updated_at, created.created_at
    pipeline = make_pipeline(FakeExtractor([report(("HDL", 65, "mg/dL"))]))
    pipeline.claim(record.id)
    pipeline.process(record.id)
    saved = _reload(db, record.id)
    assert saved.version > v0
    assert saved.updated_at >= t0
    assert saved.created_at == c0
