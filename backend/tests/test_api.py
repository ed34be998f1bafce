# tests/test_api.py
"""
End-to-end tests through the URL conf, middleware and DRF views.

The process-wide connection manager is swapped for the in-memory one
(installed_manager) so views, resolver and issuer share one store.
"""
import pytest

from accounts.authz import SchoolPrincipal


def _login(client, role, user_id, school_code="NPS"):
    client.force_authenticate(user=SchoolPrincipal(role=role, school_code=school_code, user_id=user_id))
    client.credentials(HTTP_X_SCHOOL_CODE=school_code)
    return client


# =============================================================================
# School resolution
# =============================================================================

@pytest.mark.django_db
class TestResolveSchool:
    def test_resolve_by_name(self, api_client, school):
        response = api_client.get("/api/schools/resolve/", {"identifier": "national public school"})

        assert response.status_code == 200
        assert response.data == {"school_code": "NPS", "name": "National Public School"}

    def test_unknown_school(self, api_client, school):
        response = api_client.get("/api/schools/resolve/", {"identifier": "Nowhere High"})

        assert response.status_code == 404
        assert response.data["detail"] == "unknown_school"

    def test_identifier_required(self, api_client):
        response = api_client.get("/api/schools/resolve/")

        assert response.status_code == 400


# =============================================================================
# Users
# =============================================================================

@pytest.mark.django_db
class TestProvisionUserView:
    def test_admin_provisions_student(self, admin_client):
        response = admin_client.post(
            "/api/users/",
            {"role": "student", "name": "Asha", "date_of_birth": "15/01/2008"},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["user_id"] == "STU0001"
        assert response.data["temporary_password"] == "15012008"

    def test_teacher_is_forbidden(self, api_client, school, installed_manager):
        client = _login(api_client, "teacher", "TCH0001")

        response = client.post("/api/users/", {"role": "student"}, format="json")

        assert response.status_code == 403

    def test_invalid_role(self, admin_client):
        response = admin_client.post("/api/users/", {"role": "janitor"}, format="json")

        assert response.status_code == 400

    def test_unauthenticated(self, api_client, school, installed_manager):
        api_client.credentials(HTTP_X_SCHOOL_CODE="NPS")

        response = api_client.post("/api/users/", {"role": "student"}, format="json")

        assert response.status_code in (401, 403)

    def test_other_school_principal_is_forbidden(self, api_client, school, second_school, installed_manager):
        api_client.force_authenticate(
            user=SchoolPrincipal(role="admin", school_code="KVS", user_id="ADM0001")
        )
        api_client.credentials(HTTP_X_SCHOOL_CODE="NPS")

        response = api_client.post("/api/users/", {"role": "student"}, format="json")

        assert response.status_code == 403

    def test_unknown_school_header(self, api_client, school, installed_manager):
        client = _login(api_client, "admin", "ADM0001", school_code="NOWHERE")

        response = client.post("/api/users/", {"role": "student"}, format="json")

        assert response.status_code == 404

    def test_unreachable_school(self, admin_client, connector):
        connector.fail_open = {"NPS"}

        response = admin_client.post("/api/users/", {"role": "student"}, format="json")

        assert response.status_code == 503
        assert response.json()["detail"] == "tenant_unreachable"


@pytest.mark.django_db
class TestCredentialViews:
    def test_reset_and_deactivate(self, admin_client):
        admin_client.post("/api/users/", {"role": "teacher"}, format="json")

        reset = admin_client.post("/api/users/TCH0001/reset-credential/")
        assert reset.status_code == 200
        assert reset.data["password_change_required"] is True

        deactivate = admin_client.post("/api/users/TCH0001/deactivate/")
        assert deactivate.status_code == 200
        assert deactivate.data["is_active"] is False

    def test_reset_unknown_user(self, admin_client):
        response = admin_client.post("/api/users/STU0404/reset-credential/")

        assert response.status_code == 400


# =============================================================================
# Permissions
# =============================================================================

@pytest.mark.django_db
class TestPermissionViews:
    def test_my_permissions(self, api_client, school, installed_manager):
        client = _login(api_client, "student", "STU0001")

        response = client.get("/api/permissions/me/")

        assert response.status_code == 200
        assert response.data["role"] == "student"
        assert response.data["permissions"]["viewResults"] is True
        assert response.data["permissions"]["manageUsers"] is False

    def test_update_matrix_then_read_effective(self, admin_client):
        response = admin_client.put(
            "/api/permissions/",
            {"matrix": {"parent": {"viewFees": True}}},
            format="json",
        )
        assert response.status_code == 200

        effective = admin_client.get("/api/permissions/").data["effective"]
        assert effective["parent"]["viewFees"] is True
        assert effective["parent"]["viewReports"] is False
        assert effective["teacher"]["markAttendance"] is True

    def test_bad_matrix(self, admin_client):
        response = admin_client.put(
            "/api/permissions/",
            {"matrix": {"superadmin": {"viewFees": False}}},
            format="json",
        )

        assert response.status_code == 400

    def test_teacher_cannot_read_matrix(self, api_client, school, installed_manager):
        client = _login(api_client, "teacher", "TCH0001")

        assert client.get("/api/permissions/").status_code == 403


# =============================================================================
# Operations endpoints
# =============================================================================

@pytest.mark.django_db
class TestOpsEndpoints:
    def test_liveness(self, client):
        response = client.get("/_health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_readiness(self, client):
        response = client.get("/_health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_full_health(self, client, school, installed_manager):
        installed_manager.get_handle("NPS")

        response = client.get("/_health/full")

        body = response.json()
        assert response.status_code == 200
        assert body["checks"]["school_registry"]["schools"] == 1
        assert body["checks"]["tenant_connections"]["cached"] == 1

    def test_full_health_reports_unreachable_school(self, client, school, installed_manager, connector):
        installed_manager.get_handle("NPS")
        connector.healthy["NPS"] = False
        connector.fail_open = {"NPS"}

        response = client.get("/_health/full")

        body = response.json()
        assert response.status_code == 503
        assert body["checks"]["tenant_connections"]["status"] == "degraded"
        assert body["checks"]["tenant_connections"]["unreachable"][0]["school_code"] == "NPS"

    def test_metrics(self, client, school, installed_manager):
        installed_manager.get_handle("NPS")

        response = client.get("/_metrics/")

        assert response.status_code == 200
        content = response.content.decode()
        assert "campus_tenant_connections_opened_total" in content
        assert 'campus_school_mode{school_code="NPS",db_alias="default"} 0.0' in content
