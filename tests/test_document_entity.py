"""Status machine, metadata merging and derived progress."""

from datetime import datetime, timezone

import pytest

from trustee_docs.core.entities.analysis_result import Severity
from trustee_docs.core.entities.document import (
    FAILURE_KEYS,
    PIPELINE_STEPS,
    ProcessingStatus,
    derive_progress,
    merge_metadata,
    utc_now,
)


class TestTransitions:
    @pytest.mark.parametrize("source,target", [
        (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING),
        (ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSING_FINANCIAL),
        (ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETE),
        (ProcessingStatus.PROCESSING_FINANCIAL, ProcessingStatus.COMPLETE),
        (ProcessingStatus.PENDING, ProcessingStatus.FAILED),
        (ProcessingStatus.PROCESSING, ProcessingStatus.FAILED),
        (ProcessingStatus.PROCESSING_FINANCIAL, ProcessingStatus.FAILED),
    ])
    def test_forward_transitions_allowed(self, source, target):
        assert source.can_transition_to(target)

    @pytest.mark.parametrize("source,target", [
        (ProcessingStatus.PENDING, ProcessingStatus.COMPLETE),
        (ProcessingStatus.PROCESSING_FINANCIAL, ProcessingStatus.PROCESSING),
        (ProcessingStatus.COMPLETE, ProcessingStatus.PROCESSING),
        (ProcessingStatus.FAILED, ProcessingStatus.COMPLETE),
    ])
    def test_backward_and_skipping_transitions_rejected(self, source, target):
        assert not source.can_transition_to(target)

    def test_terminal_states(self):
        assert ProcessingStatus.COMPLETE.is_terminal
        assert ProcessingStatus.FAILED.is_terminal
        assert not ProcessingStatus.PROCESSING_FINANCIAL.is_terminal


class TestMergeMetadata:
    def test_keeps_unrelated_keys(self):
        merged = merge_metadata({"fingerprint": {"sha256": "abc"}, "stage": "queued"}, {"stage": "text_extraction"})
        assert merged == {"fingerprint": {"sha256": "abc"}, "stage": "text_extraction"}

    def test_events_are_appended(self):
        merged = merge_metadata({"events": [{"event": "uploaded"}]}, {"events": [{"event": "processing_started"}]})
        assert [e["event"] for e in merged["events"]] == ["uploaded", "processing_started"]

    def test_nested_dicts_merge(self):
        existing = {"stages": {"text_extraction": {"entered_at": "t0"}}}
        merged = merge_metadata(existing, {"stages": {"text_extraction": {"exited_at": "t1"}}})
        assert merged["stages"]["text_extraction"] == {"entered_at": "t0", "exited_at": "t1"}

    def test_inputs_not_mutated(self):
        existing = {"events": [{"event": "uploaded"}], "stages": {"a": {"x": 1}}}
        patch = {"events": [{"event": "failed"}], "stages": {"a": {"y": 2}}}
        merge_metadata(existing, patch)
        assert existing == {"events": [{"event": "uploaded"}], "stages": {"a": {"x": 1}}}
        assert patch == {"events": [{"event": "failed"}], "stages": {"a": {"y": 2}}}

    def test_none_inputs(self):
        assert merge_metadata(None, None) == {}
        assert merge_metadata(None, {"a": 1}) == {"a": 1}


class TestDeriveProgress:
    def test_pending_and_complete(self):
        assert derive_progress(ProcessingStatus.PENDING, {"steps_completed": list(PIPELINE_STEPS)}) == 0
        assert derive_progress(ProcessingStatus.COMPLETE, {}) == 100

    def test_status_floors(self):
        assert derive_progress(ProcessingStatus.PROCESSING, {}) == 10
        assert derive_progress(ProcessingStatus.PROCESSING_FINANCIAL, {"steps_completed": ["storage_read"]}) == 40

    def test_steps_raise_progress(self):
        steps = ["storage_read", "text_extraction", "content_classification"]
        assert derive_progress("processing", {"steps_completed": steps}) == 47

    def test_unknown_steps_ignored(self):
        assert derive_progress("processing", {"steps_completed": ["bogus", "storage_read"]}) == 15

    def test_failed_keeps_progress_reached(self):
        meta = {"failed_from": "processing_financial", "steps_completed": ["storage_read", "text_extraction"]}
        assert derive_progress(ProcessingStatus.FAILED, meta) == 40
        assert derive_progress(ProcessingStatus.FAILED, {}) == 0

    def test_never_reaches_100_before_complete(self):
        meta = {"steps_completed": list(PIPELINE_STEPS)}
        assert derive_progress(ProcessingStatus.PROCESSING_FINANCIAL, meta) == 95


class TestSeverity:
    @pytest.mark.parametrize("member", list(Severity))
    def test_members_pass_through(self, member):
        assert Severity.coerce(member) is member

    @pytest.mark.parametrize("raw,expected", [
        ("HIGH", Severity.HIGH),
        ("critical", Severity.HIGH),
        ("Moderate", Severity.MEDIUM),
        ("medium", Severity.MEDIUM),
        ("info", Severity.LOW),
        (None, Severity.LOW),
    ])
    def test_provider_spellings(self, raw, expected):
        assert Severity.coerce(raw) is expected


def test_failed_from_is_a_failure_key():
    assert "failed_from" in FAILURE_KEYS


def test_utc_now_is_naive_utc():
    now = utc_now()
    assert now.tzinfo is None
    assert abs((datetime.now(timezone.utc).replace(tzinfo=None) - now).total_seconds()) < 5
