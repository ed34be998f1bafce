# accounts/urls.py
"""
URL configuration for the school accounts API.

Endpoints:
- /schools/resolve/ - Check a school code or name
- /users/ - User provisioning and credential management
- /permissions/ - Permission matrix and the caller's own permissions
"""

from django.urls import path

from .views import (
    DeactivateUserView,
    MyPermissionsView,
    PermissionMatrixView,
    ProvisionUserView,
    ResetCredentialView,
    ResolveSchoolView,
)

urlpatterns = [
    path("schools/resolve/", ResolveSchoolView.as_view(), name="school-resolve"),

    path("users/", ProvisionUserView.as_view(), name="user-provision"),
    path("users/<str:user_id>/reset-credential/", ResetCredentialView.as_view(), name="user-reset-credential"),
    path("users/<str:user_id>/deactivate/", DeactivateUserView.as_view(), name="user-deactivate"),

    path("permissions/", PermissionMatrixView.as_view(), name="permission-matrix"),
    path("permissions/me/", MyPermissionsView.as_view(), name="permission-me"),
]
