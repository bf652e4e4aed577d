"""Tests for the Vulnerability Reconciler."""
import asyncio
import dataclasses

import pytest

from vuln_mirror.events import IndexAction, IndexEvent
from vuln_mirror.models import Severity, Source, Vulnerability
from vuln_mirror.persistence.memory import MemorySession
from vuln_mirror.sync.vulnerability_sync import (VULNERABILITY_FIELDS,
                                                 SyncOutcome,
                                                 VulnerabilityReconciler,
                                                 update_vulnerability)


def reported(**overrides) -> Vulnerability:
    values = dict(
        vuln_id="CVE-2024-2000",
        description="Buffer overflow in widget",
        cwes=[120],
        cvss_v3_base_score=7.5,
        cvss_v3_vector="CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N",
    )
    values.update(overrides)
    return Vulnerability(**values)


@pytest.mark.asyncio
async def test_absent_vulnerability_is_created(store, event_service, recorder):
    reconciler = VulnerabilityReconciler(store, event_service)

    persistent, outcome = await reconciler.reconcile(reported())

    assert outcome is SyncOutcome.CREATED
    assert persistent.id is not None
    assert store.vulnerability(Source.NVD, "CVE-2024-2000").description == "Buffer overflow in widget"
    events = recorder.of_type(IndexEvent)
    assert [e.action for e in events] == [IndexAction.CREATE]
    assert events[0].vulnerability.id == persistent.id


@pytest.mark.asyncio
async def test_reconciling_twice_is_idempotent(store, event_service, recorder):
    reconciler = VulnerabilityReconciler(store, event_service)
    first, _ = await reconciler.reconcile(reported())

    second, outcome = await reconciler.reconcile(reported())

    assert outcome is SyncOutcome.UNCHANGED
    assert second.id == first.id
    assert len(store.vulnerabilities) == 1
    assert [e.action for e in recorder.of_type(IndexEvent)] == [IndexAction.CREATE]


@pytest.mark.asyncio
async def test_changed_field_is_updated(store, event_service, recorder):
    reconciler = VulnerabilityReconciler(store, event_service)
    await reconciler.reconcile(reported())

    _, outcome = await reconciler.reconcile(reported(description="Heap overflow in widget"))

    assert outcome is SyncOutcome.UPDATED
    assert store.vulnerability(Source.NVD, "CVE-2024-2000").description == "Heap overflow in widget"
    assert [e.action for e in recorder.of_type(IndexEvent)] == [IndexAction.CREATE, IndexAction.UPDATE]


@pytest.mark.asyncio
async def test_epss_enrichment_is_never_cleared(store):
    reconciler = VulnerabilityReconciler(store)
    persistent, _ = await reconciler.reconcile(reported())
    stored = store.vulnerabilities[persistent.id]
    stored.epss_score, stored.epss_percentile = 0.42, 0.97

    _, outcome = await reconciler.reconcile(reported())
    assert outcome is SyncOutcome.UNCHANGED
    assert store.vulnerability(Source.NVD, "CVE-2024-2000").epss_score == 0.42

    _, outcome = await reconciler.reconcile(reported(epss_score=0.5))
    assert outcome is SyncOutcome.UPDATED
    after = store.vulnerability(Source.NVD, "CVE-2024-2000")
    assert after.epss_score == 0.5
    assert after.epss_percentile == 0.97


@pytest.mark.asyncio
async def test_severity_change_keeps_reported_scores(store):
    reconciler = VulnerabilityReconciler(store)
    persistent, _ = await reconciler.reconcile(reported())
    stored = store.vulnerabilities[persistent.id]
    # A stored row carries its severity explicitly, as loaded from the database
    stored.explicit_severity = Severity.HIGH

    _, outcome = await reconciler.reconcile(reported(cvss_v3_base_score=9.8))

    after = store.vulnerability(Source.NVD, "CVE-2024-2000")
    assert outcome is SyncOutcome.UPDATED
    assert after.severity is Severity.CRITICAL
    assert after.cvss_v3_base_score == 9.8
    assert after.cvss_v3_vector == "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N"


def test_severity_change_reports_only_changed_scores():
    existing = reported(cvss_v3_base_score=5.0, cvss_v2_base_score=4.3, explicit_severity=Severity.MEDIUM)

    differ = update_vulnerability(existing, reported(cvss_v3_base_score=9.0, cvss_v2_base_score=4.3))

    assert set(differ.diffs) == {"severity", "cvss_v3_base_score"}
    assert str(differ.diffs["cvss_v3_base_score"]) == "5.0 -> 9.0"
    assert existing.cvss_v2_base_score == 4.3


def test_severity_is_applied_before_scores():
    names = [spec.name for spec in VULNERABILITY_FIELDS]
    severity_at = names.index("severity")
    assert all(names.index(score) > severity_at for score in (
        "cvss_v2_base_score", "cvss_v3_base_score", "cvss_v3_vector", "owasp_rr_vector"))


@pytest.mark.asyncio
async def test_concurrent_reconciles_of_one_key_are_serialized(store, event_service, recorder):
    reconciler = VulnerabilityReconciler(store, event_service)

    results = await asyncio.gather(reconciler.reconcile(reported()), reconciler.reconcile(reported()))

    assert sorted(outcome.value for _, outcome in results) == ["created", "unchanged"]
    assert len(store.vulnerabilities) == 1
    assert len(recorder.of_type(IndexEvent)) == 1


@pytest.mark.asyncio
async def test_event_is_dispatched_after_commit(store):
    seen_in_store = []

    class Probe:
        async def dispatch(self, event):
            seen_in_store.append(store.vulnerability(Source.NVD, event.vulnerability.vuln_id) is not None)

    reconciler = VulnerabilityReconciler(store, Probe())
    await reconciler.reconcile(reported())

    assert seen_in_store == [True]


@pytest.mark.asyncio
async def test_failed_write_rolls_back_and_sends_no_event(store, event_service, recorder, monkeypatch):
    reconciler = VulnerabilityReconciler(store, event_service)
    await reconciler.reconcile(reported())

    async def broken_update(self, vuln):
        raise RuntimeError("disk full")

    monkeypatch.setattr(MemorySession, "update_vulnerability", broken_update)

    with pytest.raises(RuntimeError):
        await reconciler.reconcile(reported(description="changed"))

    assert store.vulnerability(Source.NVD, "CVE-2024-2000").description == "Buffer overflow in widget"
    assert [e.action for e in recorder.of_type(IndexEvent)] == [IndexAction.CREATE]


@pytest.mark.asyncio
async def test_reported_input_is_not_mutated(store):
    reconciler = VulnerabilityReconciler(store)
    await reconciler.reconcile(reported())
    incoming = reported(cvss_v3_base_score=9.8)
    snapshot = dataclasses.replace(incoming)

    await reconciler.reconcile(incoming)

    assert incoming == snapshot
    assert incoming.explicit_severity is None
