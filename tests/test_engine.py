"""Tests for the reconciliation engine.

Covers the full pipeline against a StaticDirectoryClient and a recording
in-memory store: creates, fallback matches, idempotent re-runs, orphan
skipping, failure isolation, batching and test mode.
"""

import asyncio

import pytest

from halosync.connectors import AuthenticationError, NetworkError, RemoteApiError, StaticDirectoryClient
from halosync.connectors.base import OAuthTokenAuth
from halosync.store import CUSTOMER, INTEGRATION_SETTINGS, SITE
from halosync.sync.engine import ReconciliationEngine, SyncContext, load_settings
from halosync.sync.models import ConnectionCheckResult, FieldMapping, SyncOptions, SyncSummary


def _run(client, store, options=None, settings=None):
    engine = ReconciliationEngine(client, store, settings=settings)
    return asyncio.run(engine.run(options))


def _customers(store, **criteria):
    return asyncio.run(store.filter(CUSTOMER, criteria))


class TestAcmeScenarios:
    """Single-organization scenarios."""

    def test_create_into_empty_store(self, memory_store):
        """A new organization is created with its prefixed external id."""
        client = StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme"}])
        summary = _run(client, memory_store)

        assert summary.organizations.created == 1
        assert summary.organizations.matched == 0
        [acme] = _customers(memory_store)
        assert acme["external_id"] == "halo_1"
        assert acme["is_company"] is True
        assert acme["source"] == "halo_psa"
        assert acme["phone"] == ""

    def test_name_match_links_existing_record(self, seeded_store):
        """A manually created customer is matched by name and updated."""
        store = seeded_store(seed={CUSTOMER: [{"id": "c1", "name": "Acme", "external_id": None}]})
        client = StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme"}])
        summary = _run(client, store)

        assert summary.organizations.updated == 1
        assert summary.organizations.matched == 1
        assert summary.organizations.created == 0
        assert asyncio.run(store.get(CUSTOMER, "c1"))["external_id"] == "halo_1"

    def test_email_match_counts_as_matched(self, seeded_store):
        """An email match routes to update and counts in matched."""
        store = seeded_store(seed={CUSTOMER: [{"id": "c1", "name": "Old Name", "email": "OPS@acme.test"}]})
        client = StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme", "email": "ops@acme.test"}])
        summary = _run(client, store)

        assert summary.organizations.matched == 1
        assert summary.organizations.updated == 1
        assert asyncio.run(store.get(CUSTOMER, "c1"))["name"] == "Acme"

    def test_rename_keeps_identity(self, memory_store):
        """A renamed organization still updates its linked record."""
        _run(StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme"}]), memory_store)
        summary = _run(StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme Holdings"}]), memory_store)

        assert summary.organizations.created == 0
        assert summary.organizations.updated == 1
        assert summary.organizations.matched == 0
        [acme] = _customers(memory_store)
        assert acme["name"] == "Acme Holdings"

    def test_placeholder_name(self, memory_store):
        """An organization without any name is written as 'Unknown'."""
        _run(StaticDirectoryClient(organizations=[{"id": 3}]), memory_store)
        assert _customers(memory_store)[0]["name"] == "Unknown"


class TestFullPipeline:
    """Organizations, contacts and sites together."""

    def test_first_run(self, directory, memory_store):
        """Every entity type is created and linked to its parent."""
        summary = _run(directory, memory_store)

        assert summary.total == 2
        assert summary.organizations.created == 2
        assert summary.contacts.created == 2
        assert summary.contacts.skipped == 1
        assert summary.sites.created == 2
        assert summary.last_synced_at is not None

        acme = _customers(memory_store, external_id="halo_1")[0]
        ann = _customers(memory_store, external_id="halo_user_10")[0]
        assert ann["company_id"] == acme["id"]
        assert ann["company"] == "Acme"
        assert ann["is_company"] is False
        assert ann["email"] == "ann@acme.test"

        bob = _customers(memory_store, external_id="halo_user_11")[0]
        assert bob["name"] == "bob"
        assert bob["notes"] == "VIP"

    def test_orphan_contact_never_written(self, directory, memory_store):
        """A contact whose parent is absent is neither created nor updated."""
        _run(directory, memory_store)
        assert _customers(memory_store, external_id="halo_user_12") == []

    def test_sites(self, directory, memory_store):
        """Sites attach to their parent; detail is fetched when the listing has no address."""
        _run(directory, memory_store)

        sites = {s["external_id"]: s for s in asyncio.run(memory_store.list(SITE))}
        acme = _customers(memory_store, external_id="halo_1")[0]
        globex = _customers(memory_store, external_id="halo_2")[0]

        hq = sites["halo_site_100"]
        assert hq["customer_id"] == acme["id"]
        assert hq["address"] == "1 Road"
        assert hq["is_default"] is True

        unnamed = sites["halo_site_101"]
        assert unnamed["name"] == "Main Site"
        assert unnamed["customer_id"] == globex["id"]
        assert unnamed["address"] == "9 Lane"
        assert unnamed["state"] == "IL"
        assert unnamed["is_default"] is False

        assert directory.call_count("fetch_site_detail") == 1

    def test_rerun_is_idempotent(self, directory, memory_store):
        """Re-running with unchanged data creates nothing."""
        _run(directory, memory_store)
        before = len(asyncio.run(memory_store.list(CUSTOMER))), len(asyncio.run(memory_store.list(SITE)))

        summary = _run(directory, memory_store)

        assert summary.organizations.created == 0
        assert summary.contacts.created == 0
        assert summary.sites.created == 0
        assert summary.organizations.updated == 2
        assert summary.contacts.updated == 2
        assert summary.sites.updated == 2
        assert summary.organizations.matched == 0
        after = len(asyncio.run(memory_store.list(CUSTOMER))), len(asyncio.run(memory_store.list(SITE)))
        assert after == before

    def test_excluded_organization_skips_children(self, directory, memory_store):
        """Excluded organizations and their contacts/sites are not synced."""
        settings = asyncio.run(
            memory_store.create(INTEGRATION_SETTINGS, {"setting_key": "main", "halopsa_excluded_ids": " 2 "})
        )
        summary = _run(directory, memory_store, settings=settings)

        assert summary.total == 1
        assert _customers(memory_store, external_id="halo_2") == []
        assert _customers(memory_store, external_id="halo_user_11") == []
        assert summary.contacts.created == 1
        assert summary.sites.created == 1

    def test_contact_fallback_match(self, directory, seeded_store):
        """A pre-existing HaloPSA contact matched by email is updated."""
        store = seeded_store(
            seed={
                CUSTOMER: [
                    {"id": "u1", "name": "A. Admin", "email": "ANN@acme.test", "is_company": False, "source": "halo_psa"},
                ]
            }
        )
        summary = _run(directory, store)

        assert summary.contacts.matched == 1
        assert summary.contacts.updated == 1
        assert asyncio.run(store.get(CUSTOMER, "u1"))["external_id"] == "halo_user_10"

    def test_contact_scope_excludes_other_sources(self, directory, seeded_store):
        """Contacts never match records from other sources."""
        store = seeded_store(
            seed={CUSTOMER: [{"id": "m1", "name": "Ann Admin", "is_company": False, "source": "manual"}]}
        )
        summary = _run(directory, store)
        assert summary.contacts.matched == 0
        assert summary.contacts.created == 2

    def test_field_mapping_override(self, memory_store):
        """A caller mapping changes which remote field is read."""
        client = StaticDirectoryClient(
            organizations=[{"id": 1, "name": "Acme", "site": {"line1": "5 High St"}}]
        )
        options = SyncOptions(field_mapping=FieldMapping(address="site.line1"))
        _run(client, memory_store, options)
        assert _customers(memory_store)[0]["address"] == "5 High St"


class TestLinkedRecordsStayLinked:
    """A record linked to one remote id is never taken over by another."""

    def test_shared_contact_name_across_organizations(self, memory_store):
        """Two "Reception" contacts under different organizations stay separate."""
        client = StaticDirectoryClient(
            organizations=[{"id": 1, "name": "Acme"}],
            contacts=[{"id": 10, "name": "Reception", "client_id": 1}],
        )
        _run(client, memory_store)

        client.organizations = [{"id": 1, "name": "Acme"}, {"id": 2, "name": "Globex"}]
        client.contacts = [
            {"id": 10, "name": "Reception", "client_id": 1},
            {"id": 20, "name": "Reception", "client_id": 2},
        ]
        summary = _run(client, memory_store)

        assert summary.contacts.created == 1
        assert summary.contacts.updated == 1
        assert summary.contacts.matched == 0
        contacts = {c["external_id"]: c["company"] for c in _customers(memory_store, is_company=False)}
        assert contacts == {"halo_user_10": "Acme", "halo_user_20": "Globex"}

    def test_shared_organization_email(self, seeded_store):
        """A new organization sharing a linked company's email is created."""
        store = seeded_store(
            seed={
                CUSTOMER: [
                    {"id": "c1", "name": "Acme", "email": "ops@shared.test", "external_id": "halo_1", "is_company": True},
                ]
            }
        )
        client = StaticDirectoryClient(
            organizations=[
                {"id": 1, "name": "Acme", "email": "ops@shared.test"},
                {"id": 2, "name": "Acme East", "email": "ops@shared.test"},
            ]
        )
        summary = _run(client, store)

        assert summary.organizations.updated == 1
        assert summary.organizations.created == 1
        assert summary.organizations.matched == 0
        companies = {c["external_id"]: c["name"] for c in _customers(store, is_company=True)}
        assert companies == {"halo_1": "Acme", "halo_2": "Acme East"}

    def test_unlinked_record_claimed_once(self, seeded_store):
        """Two remote organizations with one name link one record and create the other."""
        store = seeded_store(seed={CUSTOMER: [{"id": "c1", "name": "Acme", "external_id": None}]})
        client = StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme"}, {"id": 2, "name": "Acme"}])
        summary = _run(client, store)

        assert summary.organizations.matched == 1
        assert summary.organizations.updated == 1
        assert summary.organizations.created == 1
        assert asyncio.run(store.get(CUSTOMER, "c1"))["external_id"] == "halo_1"
        assert len(_customers(store, external_id="halo_2")) == 1

    def test_organization_never_matches_contact(self, seeded_store):
        """A contact with an organization's name is not turned into a company."""
        store = seeded_store(
            seed={CUSTOMER: [{"id": "u1", "name": "Acme", "is_company": False, "source": "manual"}]}
        )
        summary = _run(StaticDirectoryClient(organizations=[{"id": 1, "name": "Acme"}]), store)

        assert summary.organizations.created == 1
        assert summary.organizations.matched == 0
        assert asyncio.run(store.get(CUSTOMER, "u1"))["is_company"] is False


class TestTestMode:
    """Connection-test mode."""

    def test_no_writes(self, directory, memory_store):
        """Test mode never calls create or update."""
        result = _run(directory, memory_store, SyncOptions(test_only=True))

        assert isinstance(result, ConnectionCheckResult)
        assert memory_store.writes == []
        assert not directory.was_called("fetch_contacts")

    def test_sample(self, directory, memory_store):
        """Result carries count, field names and an example organization."""
        result = _run(directory, memory_store, SyncOptions(test_only=True))

        assert result.total == 2
        assert result.sample_fields == ["id", "name", "email", "main_phone", "county"]
        assert result.sample_organization["name"] == "Acme"
        assert result.sample_site["id"] == 100

    def test_sample_fields_capped(self, memory_store):
        """At most 20 field names are sampled."""
        org = {f"field_{i}": i for i in range(30)}
        result = _run(StaticDirectoryClient(organizations=[org]), memory_store, SyncOptions(test_only=True))
        assert len(result.sample_fields) == 20

    def test_site_failure_tolerated(self, directory, memory_store):
        """A failing site endpoint does not fail the test."""
        directory.set_error("fetch_sites", RemoteApiError("nope", status_code=404))
        result = _run(directory, memory_store, SyncOptions(test_only=True))
        assert result.sample_site is None


class TestFatalErrors:
    """Errors that abort a run."""

    def test_authentication_failure(self, directory, memory_store):
        directory.set_error("authenticate", AuthenticationError("bad", status_code=401))
        with pytest.raises(AuthenticationError):
            _run(directory, memory_store)
        assert memory_store.writes == []

    def test_organizations_fetch_failure(self, directory, memory_store):
        directory.set_error("fetch_organizations", NetworkError("down", url="https://x.test/api/Client"))
        with pytest.raises(NetworkError):
            _run(directory, memory_store)
        assert memory_store.writes == []


class TestDegradedPhases:
    """Failures that only degrade a phase."""

    def test_contacts_fetch_failure(self, directory, memory_store):
        """Contacts fetch failure leaves organizations and sites synced."""
        directory.set_error("fetch_contacts", RemoteApiError("down", status_code=500))
        summary = _run(directory, memory_store)

        assert summary.organizations.created == 2
        assert summary.contacts.created == 0
        assert summary.sites.created == 2
        assert any("Contacts" in w for w in summary.warnings)
        assert summary.last_synced_at is not None

    def test_sites_fetch_failure(self, directory, memory_store):
        directory.set_error("fetch_sites", NetworkError("down"))
        summary = _run(directory, memory_store)
        assert summary.sites.created == 0
        assert summary.contacts.created == 2

    def test_site_detail_failure_uses_listing(self, directory, memory_store):
        """A failed detail fetch falls back to the listed record."""
        directory.set_error("fetch_site_detail", NetworkError("down"))
        summary = _run(directory, memory_store)
        assert summary.sites.created == 2
        site = [s for s in asyncio.run(memory_store.list(SITE)) if s["external_id"] == "halo_site_101"][0]
        assert site["address"] == ""

    def test_empty_organizations(self, directory, memory_store):
        """No organizations: children are skipped and the run still completes."""
        directory.organizations = []
        summary = _run(directory, memory_store)

        assert summary.total == 0
        assert not directory.was_called("fetch_contacts")
        assert not directory.was_called("fetch_sites")
        assert summary.last_synced_at is not None


class TestFailureIsolation:
    """Per-item write failures."""

    def test_update_failure_isolated(self, directory, seeded_store):
        """One failed update is tallied; the rest of the run proceeds."""
        store = seeded_store(
            seed={
                CUSTOMER: [
                    {"id": "c1", "name": "Acme", "external_id": "halo_1", "is_company": True},
                    {"id": "c2", "name": "Globex", "external_id": "halo_2", "is_company": True},
                ]
            }
        )
        store.fail_update_ids.add("c1")
        summary = _run(directory, store)

        assert summary.organizations.failed == 1
        assert summary.organizations.updated == 1
        assert summary.failures[0].remote_ids == ["1"]
        # Acme's children have no parent in this run
        assert _customers(store, external_id="halo_user_10") == []
        assert _customers(store, external_id="halo_user_11")[0]["company_id"] == "c2"

    def test_create_batch_failure_isolated(self, directory, memory_store):
        """A failed create batch is tallied and later phases still run."""
        memory_store.fail_bulk_create_collections.add(SITE)
        summary = _run(directory, memory_store)

        assert summary.sites.failed == 2
        assert summary.sites.created == 0
        assert summary.contacts.created == 2
        assert summary.last_synced_at is not None

    def test_organization_create_failure_skips_children(self, directory, memory_store):
        """Children of organizations that failed to write are skipped."""
        memory_store.fail_bulk_create_collections.add(CUSTOMER)
        summary = _run(directory, memory_store)

        assert summary.organizations.failed == 2
        assert not directory.was_called("fetch_contacts")
        assert summary.contacts.created == 0

    def test_stamp_failure_not_fatal(self, directory, memory_store):
        """Failing to stamp the last-sync time only adds a warning."""
        settings = asyncio.run(memory_store.create(INTEGRATION_SETTINGS, {"setting_key": "main"}))
        memory_store.fail_settings_update = True
        summary = _run(directory, memory_store, settings=settings)

        assert summary.organizations.created == 2
        assert summary.last_synced_at is None
        assert any("Last sync" in w for w in summary.warnings)


class TestBatching:
    """Write grouping."""

    def test_create_batches(self, memory_store):
        """Creates are issued in bulk batches of the configured size."""
        orgs = [{"id": i, "name": f"Org {i}"} for i in range(7)]
        _run(StaticDirectoryClient(organizations=orgs), memory_store, SyncOptions(create_batch_size=3))

        batches = [w for w in memory_store.writes if w[0] == "bulk_create" and w[1] == CUSTOMER]
        assert [len(w[2]) for w in batches] == [3, 3, 1]

    def test_update_groups(self, seeded_store):
        """All updates are issued regardless of group size."""
        seed = [{"id": f"c{i}", "name": f"Org {i}", "external_id": f"halo_{i}"} for i in range(5)]
        store = seeded_store(seed={CUSTOMER: seed})
        client = StaticDirectoryClient(organizations=[{"id": i, "name": f"Org {i}"} for i in range(5)])
        summary = _run(client, store, SyncOptions(update_group_size=2))

        assert summary.organizations.updated == 5
        assert len([w for w in store.writes if w[0] == "update" and w[1] == CUSTOMER]) == 5


class TestLastSync:
    """Completion stamp."""

    def test_stamps_existing_settings(self, directory, memory_store):
        settings = asyncio.run(memory_store.create(INTEGRATION_SETTINGS, {"setting_key": "main"}))
        summary = _run(directory, memory_store, settings=settings)

        stored = asyncio.run(load_settings(memory_store))
        assert stored["id"] == settings["id"]
        assert stored["halopsa_last_sync"] == summary.last_synced_at

    def test_creates_settings_when_missing(self, directory, memory_store):
        summary = _run(directory, memory_store)
        stored = asyncio.run(load_settings(memory_store))
        assert stored["halopsa_last_sync"] == summary.last_synced_at


class TestIdentityMapIsPerRun:
    """The remote identity map lives on the run context."""

    def test_context_starts_empty(self):
        ctx = SyncContext(token=OAuthTokenAuth(access_token="t"), options=SyncOptions())
        assert ctx.identity_map == {}
        assert isinstance(ctx.summary, SyncSummary)

    def test_separate_runs_do_not_share_map(self, directory, memory_store):
        """A second run with no organizations links nothing."""
        _run(directory, memory_store)
        directory.organizations = []
        summary = _run(directory, memory_store)
        assert summary.contacts.updated == 0
        assert summary.contacts.skipped == 0
