"""Tests for attribution aware reconciliation of affected software."""
import pytest

from nvd_samples import CPE_P, CPE_Q, at
from vuln_mirror.models import (AffectedSoftware, AffectedVersionAttribution,
                                Source, Vulnerability)
from vuln_mirror.sources.base.exceptions import ReconciliationException
from vuln_mirror.sync.affected_software_sync import AffectedSoftwareReconciler

T1 = at("2024-01-01T00:00:00")
T2 = at("2024-01-02T00:00:00")
T3 = at("2024-01-03T00:00:00")


def p_range(end: str = "2.0") -> AffectedSoftware:
    return AffectedSoftware(cpe23=CPE_P, part="a", vendor="acme", product="widget", version="*",
                            version_start_including="1.0", version_end_excluding=end)


def q_range() -> AffectedSoftware:
    return AffectedSoftware(cpe23=CPE_Q, part="a", vendor="acme", product="gadget", version="*")


async def persist(store, vuln_id: str = "CVE-2024-3000") -> Vulnerability:
    async with store.transaction() as session:
        return await session.insert_vulnerability(Vulnerability(vuln_id))


async def attribute_to(store, vuln: Vulnerability, affected: AffectedSoftware, source: Source):
    """Simulate another feed having reported `affected` for `vuln`"""
    async with store.transaction() as session:
        persistent = await session.find_affected_software(affected) or await session.insert_affected_software(affected)
        await session.insert_attribution(AffectedVersionAttribution(vuln.id, persistent.id, source, T1, T1))
        current = [vs.id for vs in await session.get_affected_software(vuln.id)]
        await session.set_affected_software(vuln.id, current + [persistent.id])
    return persistent


@pytest.mark.asyncio
async def test_new_ranges_are_created_and_attributed(store):
    vuln = await persist(store)
    reconciler = AffectedSoftwareReconciler(store)

    result = await reconciler.reconcile(vuln, [p_range(), q_range()], seen_at=T1)

    assert len(result.added) == 2
    assert [vs.cpe23 for vs in store.associated(vuln.id)] == [CPE_P, CPE_Q]
    attributions = store.attributions_for(vuln.id)
    assert len(attributions) == 2
    assert all(a.source is Source.NVD and a.first_seen == a.last_seen == T1 for a in attributions)


@pytest.mark.asyncio
async def test_rereported_range_refreshes_last_seen_only(store):
    vuln = await persist(store)
    reconciler = AffectedSoftwareReconciler(store)
    await reconciler.reconcile(vuln, [p_range()], seen_at=T1)

    result = await reconciler.reconcile(vuln, [p_range()], seen_at=T2)

    assert not result.changed
    [attribution] = store.attributions_for(vuln.id)
    assert attribution.first_seen == T1
    assert attribution.last_seen == T2
    assert len(store.affected_software) == 1


@pytest.mark.asyncio
async def test_range_reported_by_other_source_survives(store):
    vuln = await persist(store)
    github_range = await attribute_to(store, vuln, q_range(), Source.GITHUB)
    reconciler = AffectedSoftwareReconciler(store)

    result = await reconciler.reconcile(vuln, [p_range()], seen_at=T2)

    assert github_range.id in {vs.id for vs in result.kept}
    assert {vs.cpe23 for vs in store.associated(vuln.id)} == {CPE_P, CPE_Q}
    [github_attribution] = store.attributions_for(vuln.id, github_range.id)
    assert github_attribution.source is Source.GITHUB
    assert github_attribution.last_seen == T1


@pytest.mark.asyncio
async def test_range_no_longer_reported_is_removed(store):
    vuln = await persist(store)
    reconciler = AffectedSoftwareReconciler(store)
    await reconciler.reconcile(vuln, [p_range("2.0")], seen_at=T1)

    result = await reconciler.reconcile(vuln, [p_range("3.0")], seen_at=T3)

    assert [vs.version_end_excluding for vs in result.removed] == ["2.0"]
    [current] = store.associated(vuln.id)
    assert current.version_end_excluding == "3.0"
    [attribution] = store.attributions_for(vuln.id)
    assert attribution.affected_software_id == current.id
    assert attribution.first_seen == T3


@pytest.mark.asyncio
async def test_shared_range_loses_only_this_sources_attribution(store):
    vuln = await persist(store)
    reconciler = AffectedSoftwareReconciler(store)
    await reconciler.reconcile(vuln, [p_range()], seen_at=T1)
    [shared] = store.associated(vuln.id)
    await attribute_to(store, vuln, p_range(), Source.OSV)

    result = await reconciler.reconcile(vuln, [], seen_at=T2)

    assert [vs.id for vs in result.kept] == [shared.id]
    assert [a.source for a in store.attributions_for(vuln.id, shared.id)] == [Source.OSV]


@pytest.mark.asyncio
async def test_associated_range_without_attribution_is_removed(store, caplog):
    vuln = await persist(store)
    async with store.transaction() as session:
        orphan = await session.insert_affected_software(q_range())
        await session.set_affected_software(vuln.id, [orphan.id])

    result = await AffectedSoftwareReconciler(store).reconcile(vuln, [p_range()], seen_at=T1)

    assert [vs.id for vs in result.removed] == [orphan.id]
    assert [vs.cpe23 for vs in store.associated(vuln.id)] == [CPE_P]
    assert "has no attribution" in caplog.text


@pytest.mark.asyncio
async def test_reported_range_without_own_attribution_gets_one(store):
    vuln = await persist(store)
    shared = await attribute_to(store, vuln, p_range(), Source.GITHUB)

    await AffectedSoftwareReconciler(store).reconcile(vuln, [p_range()], seen_at=T2)

    sources = sorted(a.source.value for a in store.attributions_for(vuln.id, shared.id))
    assert sources == ["GITHUB", "NVD"]


@pytest.mark.asyncio
async def test_identical_row_of_other_vulnerability_is_reused(store):
    first = await persist(store, "CVE-2024-3001")
    second = await persist(store, "CVE-2024-3002")
    reconciler = AffectedSoftwareReconciler(store)
    await reconciler.reconcile(first, [p_range()], seen_at=T1)

    await reconciler.reconcile(second, [p_range()], seen_at=T2)

    assert len(store.affected_software) == 1
    assert store.associated(first.id)[0].id == store.associated(second.id)[0].id
    assert len(store.attributions_for(second.id)) == 1


@pytest.mark.asyncio
async def test_existing_attribution_is_not_duplicated(store):
    vuln = await persist(store)
    async with store.transaction() as session:
        row = await session.insert_affected_software(p_range())
        # Attribution left behind without an association
        await session.insert_attribution(AffectedVersionAttribution(vuln.id, row.id, Source.NVD, T1, T1))

    await AffectedSoftwareReconciler(store).reconcile(vuln, [p_range()], seen_at=T2)

    assert len(store.attributions_for(vuln.id, row.id)) == 1
    assert [vs.id for vs in store.associated(vuln.id)] == [row.id]


@pytest.mark.asyncio
async def test_leftover_attribution_is_refreshed_when_range_is_reattached(store):
    vuln = await persist(store)
    async with store.transaction() as session:
        row = await session.insert_affected_software(p_range())
        await session.insert_attribution(AffectedVersionAttribution(vuln.id, row.id, Source.NVD, T1, T1))

    result = await AffectedSoftwareReconciler(store).reconcile(vuln, [p_range()], seen_at=T2)

    assert [vs.id for vs in result.added] == [row.id]
    [attribution] = store.attributions_for(vuln.id, row.id)
    assert attribution.first_seen == T1
    assert attribution.last_seen == T2


@pytest.mark.asyncio
async def test_duplicates_in_reported_set_are_collapsed(store):
    vuln = await persist(store)

    result = await AffectedSoftwareReconciler(store).reconcile(vuln, [p_range(), p_range(), p_range()], seen_at=T1)

    assert len(result.added) == 1
    assert len(store.attributions_for(vuln.id)) == 1


@pytest.mark.asyncio
async def test_every_associated_range_keeps_an_attribution(store):
    vuln = await persist(store)
    await attribute_to(store, vuln, q_range(), Source.SNYK)
    reconciler = AffectedSoftwareReconciler(store)

    for reported, seen_at in (([p_range()], T1), ([p_range("3.0"), q_range()], T2), ([], T3)):
        await reconciler.reconcile(vuln, reported, seen_at=seen_at)
        for vs in store.associated(vuln.id):
            assert store.attributions_for(vuln.id, vs.id)

    assert [vs.cpe23 for vs in store.associated(vuln.id)] == [CPE_Q]


@pytest.mark.asyncio
async def test_default_clock_is_used_without_seen_at(store):
    vuln = await persist(store)

    await AffectedSoftwareReconciler(store, clock=lambda: T2).reconcile(vuln, [p_range()])

    assert store.attributions_for(vuln.id)[0].first_seen == T2


@pytest.mark.asyncio
async def test_transient_vulnerability_is_rejected(store):
    with pytest.raises(ReconciliationException):
        await AffectedSoftwareReconciler(store).reconcile(Vulnerability("CVE-2024-3999"), [p_range()])
