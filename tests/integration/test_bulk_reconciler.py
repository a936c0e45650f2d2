"""Integration tests for BulkReconciler (administrative batch import)."""
from __future__ import annotations

import pytest

from wealth_access.models.enums import AuditAction
from wealth_access.repositories.hierarchy_store import HierarchyStore
from wealth_access.services.bulk_reconciler import BulkReconciler


@pytest.fixture
def reconciler(store: HierarchyStore) -> BulkReconciler:
    return BulkReconciler(store)


class TestBulkImport:
    async def test_creates_new_users_under_default_parent(
        self, reconciler: BulkReconciler, store: HierarchyStore, org
    ):
        result = await reconciler.bulk_import(
            [
                {"login_key": "CL100", "name": "First", "role": "client"},
                {"login_key": "CL101", "name": "Second"},
            ],
            default_parent_id=org.ids["rm_bala"],
        )

        assert result.success_count == 2
        assert result.failed_count == 0
        for key in ("CL100", "CL101"):
            user = await store.find_by_login_key(key)
            assert user.parent_id == org.ids["rm_bala"]
            assert user.role == "client"

    async def test_record_parent_overrides_default(
        self, reconciler: BulkReconciler, store: HierarchyStore, org
    ):
        await reconciler.bulk_import(
            [{"login_key": "CL102", "parent_id": org.ids["rm_anita"]}],
            default_parent_id=org.ids["rm_bala"],
        )
        user = await store.find_by_login_key("CL102")
        assert user.parent_id == org.ids["rm_anita"]

    async def test_existing_user_is_updated_not_moved(
        self, reconciler: BulkReconciler, store: HierarchyStore, org
    ):
        result = await reconciler.bulk_import(
            [
                {
                    "login_key": "CLIENT_A1",
                    "name": "Renamed",
                    "phone": "+919000000001",
                    "role": "rm",
                    "parent_id": org.ids["rm_bala"],
                }
            ]
        )

        assert result.success_count == 1
        user = await store.get(org.ids["client_a1"])
        assert user.name == "Renamed"
        assert user.phone == "+919000000001"
        # Structural fields are left to the hierarchy endpoints.
        assert user.role == "client"
        assert user.parent_id == org.ids["rm_anita"]

    async def test_duplicate_login_key_in_batch_fails_second_record(
        self, reconciler: BulkReconciler, store: HierarchyStore
    ):
        result = await reconciler.bulk_import(
            [
                {"login_key": "dup", "name": "First"},
                {"login_key": "DUP", "name": "Second"},
            ]
        )

        assert result.success_count == 1
        assert result.failed_count == 1
        assert result.errors[0].record["login_key"] == "DUP"
        assert "already exists" in result.errors[0].error
        user = await store.find_by_login_key("dup")
        assert user.name == "First"

    async def test_invalid_records_reported_and_rest_imported(
        self, reconciler: BulkReconciler, store: HierarchyStore, org
    ):
        result = await reconciler.bulk_import(
            [
                {"name": "No login key"},
                {"login_key": "bad-role", "role": "overlord"},
                {"login_key": "orphan", "parent_id": 9999},
                {"login_key": "too-senior", "role": "director", "parent_id": org.ids["rm_anita"]},
                {"login_key": "CL200"},
            ]
        )

        assert result.success_count == 1
        assert result.failed_count == 4
        errors = [failure.error for failure in result.errors]
        assert "login_key" in errors[0]
        assert "overlord" in errors[1]
        assert "9999" in errors[2]
        assert "Hierarchy validation failed" in errors[3]
        assert await store.find_by_login_key("CL200") is not None
        assert await store.find_by_login_key("too-senior") is None

    async def test_external_id_conflict_is_reported(
        self, reconciler: BulkReconciler, org
    ):
        result = await reconciler.bulk_import(
            [{"login_key": "fresh", "external_id": "sub-admin"}]
        )
        assert result.failed_count == 1
        assert "sub-admin" in result.errors[0].error

    async def test_audited_once_per_batch(
        self, reconciler: BulkReconciler, store: HierarchyStore, org
    ):
        await reconciler.bulk_import(
            [{"login_key": "CL300"}, {"login_key": "CL300"}],
            actor_id=org.ids["admin"],
        )
        entries = await store.audit.find_by_action(AuditAction.BULK_IMPORT)
        assert len(entries) == 1
        assert entries[0].actor_id == org.ids["admin"]
        assert entries[0].detail == {"success_count": 1, "failed_count": 1}

    async def test_no_batch_audit_without_actor(self, reconciler: BulkReconciler, store: HierarchyStore):
        await reconciler.bulk_import([{"login_key": "CL400"}])
        assert await store.audit.find_by_action(AuditAction.BULK_IMPORT) == []

    async def test_empty_batch(self, reconciler: BulkReconciler):
        result = await reconciler.bulk_import([])
        assert result.success_count == 0
        assert result.failed_count == 0
        assert result.errors == []
