"""API tests for the hierarchy endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from wealth_access.models.enums import AuditAction
from wealth_access.schemas.auth import VerifiedClaims

if TYPE_CHECKING:
    from httpx import AsyncClient

BASE = "/api/v1/hierarchy"


class TestCurrentUser:
    async def test_requires_identity(self, client: AsyncClient) -> None:
        response = await client.get(f"{BASE}/me")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "UNAUTHORIZED"

    async def test_returns_reconciled_user(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)

        response = await client.get(f"{BASE}/me")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "timestamp" in body["meta"]
        assert body["data"]["id"] == org.ids["rm_anita"]
        assert body["data"]["role"] == "rm"
        assert body["data"]["hierarchy_path"] == org.rm_anita.hierarchy_path
        assert body["data"]["last_login_at"] is not None

    async def test_first_login_provisions_user(self, client: AsyncClient, claims_box) -> None:
        claims_box.claims = VerifiedClaims(
            subject_id="sub-new-client",
            login_name="CL9000",
            email="new.client@example.com",
        )

        response = await client.get(f"{BASE}/me")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["login_key"] == "CL9000"
        assert data["role"] == "client"
        assert data["parent_id"] is None
        assert data["hierarchy_path"] == f"/{data['id']}"

    async def test_inactive_user_rejected(self, client: AsyncClient, claims_box, store, org) -> None:
        claims_box.login_as(org.client_a1)
        await store.deactivate(org.ids["client_a1"])

        response = await client.get(f"{BASE}/me")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "USER_INACTIVE"
        user = await store.get(org.ids["client_a1"])
        assert user.last_login_at is None
        assert await store.audit.find_by_action(AuditAction.USER_LOGIN) == []

    async def test_role_sync_conflict_rejected(self, client: AsyncClient, claims_box, store, org) -> None:
        claims_box.login_as(org.rm_anita, role_attribute=None)

        response = await client.get(f"{BASE}/me")

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "ROLE_SYNC_CONFLICT"
        assert "errors" not in (error["details"] or {})
        user = await store.get(org.ids["rm_anita"])
        assert user.role == "rm"
        assert user.last_login_at is None


class TestTreeReads:
    async def test_manager_reads_report(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch)
        response = await client.get(f"{BASE}/users/{org.ids['client_a1']}")
        assert response.status_code == 200
        assert response.json()["data"]["login_key"] == "client_a1"

    async def test_outside_subtree_forbidden(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)
        response = await client.get(f"{BASE}/users/{org.ids['client_b1']}")
        assert response.status_code == 403
        body = response.json()
        assert body["error"]["code"] == "ACCESS_DENIED"
        assert body["error"]["details"]["target_id"] == org.ids["client_b1"]

    async def test_unknown_user_forbidden_below_top(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch)
        response = await client.get(f"{BASE}/users/9999")
        assert response.status_code == 403

    async def test_unknown_user_not_found_for_top(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.get(f"{BASE}/users/9999")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "USER_NOT_FOUND"

    async def test_direct_reports(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch)
        response = await client.get(
            f"{BASE}/users/{org.ids['branch']}/descendants", params={"direct": "true"}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        assert [u["name"] for u in data["users"]] == ["Anita", "Bala"]

    async def test_whole_subtree(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.zonal)
        response = await client.get(f"{BASE}/users/{org.ids['branch']}/descendants")
        data = response.json()["data"]
        assert data["total"] == 5

    async def test_ancestors_nearest_first(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)
        response = await client.get(f"{BASE}/users/{org.ids['rm_anita']}/ancestors")
        assert response.status_code == 200
        ids = [u["id"] for u in response.json()["data"]["users"]]
        assert ids == [org.ids["branch"], org.ids["zonal"], org.ids["director"], org.ids["admin"]]

    async def test_direct_manager(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)
        response = await client.get(f"{BASE}/users/{org.ids['client_a2']}/parent")
        assert response.status_code == 200
        assert response.json()["data"]["id"] == org.ids["rm_anita"]

    async def test_root_has_no_manager(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.get(f"{BASE}/users/{org.ids['admin']}/parent")
        assert response.status_code == 200
        assert response.json()["data"] is None

    async def test_manager_outside_subtree_forbidden(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)
        response = await client.get(f"{BASE}/users/{org.ids['client_b1']}/parent")
        assert response.status_code == 403

    async def test_counts(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.zonal)
        response = await client.get(f"{BASE}/users/{org.ids['branch']}/counts")
        data = response.json()["data"]
        assert data["user_id"] == org.ids["branch"]
        assert data["counts"] == {"rm": 2, "client": 3}
        assert list(data["counts"]) == ["rm", "client"]
        assert data["total"] == 5


class TestAccess:
    async def test_access_check_allowed(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch)
        response = await client.get(f"{BASE}/access/{org.ids['client_b1']}")
        assert response.status_code == 200
        assert response.json()["data"] == {
            "accessor_id": org.ids["branch"],
            "target_id": org.ids["client_b1"],
            "allowed": True,
        }

    async def test_access_check_denied_is_not_an_error(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch2)
        response = await client.get(f"{BASE}/access/{org.ids['client_a1']}")
        assert response.status_code == 200
        assert response.json()["data"]["allowed"] is False

    async def test_accessible_users(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.rm_anita)
        response = await client.get(f"{BASE}/accessible")
        data = response.json()["data"]
        assert [u["id"] for u in data["users"]] == [
            org.ids["rm_anita"],
            org.ids["client_a1"],
            org.ids["client_a2"],
        ]

    async def test_accessible_users_filtered(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.get(f"{BASE}/accessible", params={"role": "rm", "branch_id": 10})
        names = [u["name"] for u in response.json()["data"]["users"]]
        assert names == ["Anita", "Bala"]

    async def test_invalid_role_filter(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.get(f"{BASE}/accessible", params={"role": "king"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_invalid_status_filter(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.get(f"{BASE}/accessible", params={"status": "sleeping"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestReparenting:
    async def test_admin_moves_subtree(self, client: AsyncClient, claims_box, store, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.put(
            f"{BASE}/users/{org.ids['rm_anita']}/parent",
            json={"parent_id": org.ids["branch2"]},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["parent_id"] == org.ids["branch2"]
        client_a1 = await store.get(org.ids["client_a1"])
        assert client_a1.hierarchy_path.startswith(data["hierarchy_path"] + "/")

    async def test_requires_admin(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.branch)
        response = await client.put(
            f"{BASE}/users/{org.ids['rm_anita']}/parent",
            json={"parent_id": org.ids["branch2"]},
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ADMIN_REQUIRED"

    async def test_cycle_rejected(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.put(
            f"{BASE}/users/{org.ids['zonal']}/parent",
            json={"parent_id": org.ids["client_a1"]},
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "HIERARCHY_VALIDATION_FAILED"
        assert error["details"]["errors"]

    async def test_unknown_parent(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.put(
            f"{BASE}/users/{org.ids['rm_anita']}/parent", json={"parent_id": 9999}
        )
        assert response.status_code == 404

    async def test_detach(self, client: AsyncClient, claims_box, org) -> None:
        claims_box.login_as(org.admin)
        response = await client.delete(f"{BASE}/users/{org.ids['rm_bala']}/parent")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["parent_id"] is None
        assert data["hierarchy_path"] == f"/{org.ids['rm_bala']}"
        assert data["hierarchy_level"] == 0
