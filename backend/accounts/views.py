from rest_framework import permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.authz import get_permission_resolver
from accounts.commands import (
    deactivate_user,
    provision_user,
    reset_user_credential,
    update_permission_matrix,
)
from accounts.permission_defaults import PERMISSION_KEYS
from accounts.permissions import HasSchoolPermission
from accounts.serializers import (
    PermissionMatrixSerializer,
    ProvisionUserSerializer,
    ResolveSchoolSerializer,
)
from tenant.registry import TenantRegistry


def _result_response(result, success_status=status.HTTP_200_OK):
    if result.success:
        return Response(result.data, status=success_status)
    return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)


class ResolveSchoolView(APIView):
    """Check a school code or name before sign-in."""

    permission_classes = [permissions.AllowAny]

    def get(self, request, *args, **kwargs):
        serializer = ResolveSchoolSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        registry = TenantRegistry()
        code = registry.resolve(serializer.validated_data["identifier"])
        if code is None:
            raise NotFound("unknown_school")
        school = registry.get(code)
        return Response({
            "school_code": code,
            "name": school.name if school else code,
        })


class ProvisionUserView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasSchoolPermission]
    required_permission = "manageUsers"

    def post(self, request, *args, **kwargs):
        serializer = ProvisionUserSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        role = data.pop("role")
        date_of_birth = data.pop("date_of_birth", None) or None
        result = provision_user(request.actor, role, date_of_birth=date_of_birth, **data)
        return _result_response(result, status.HTTP_201_CREATED)


class ResetCredentialView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasSchoolPermission]

    def post(self, request, user_id, *args, **kwargs):
        return _result_response(reset_user_credential(request.actor, user_id))


class DeactivateUserView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasSchoolPermission]
    required_permission = "manageUsers"

    def post(self, request, user_id, *args, **kwargs):
        return _result_response(deactivate_user(request.actor, user_id))


class PermissionMatrixView(APIView):
    """
    GET: effective permissions for every role in the school
    PUT: replace the school's own matrix
    """

    permission_classes = [permissions.IsAuthenticated, HasSchoolPermission]
    required_permission = "manageSchoolSettings"

    def get(self, request, *args, **kwargs):
        resolver = get_permission_resolver()
        school_code = request.actor.school_code
        effective = {
            role: {
                key: resolver.explain(role, school_code, key).allowed
                for key in PERMISSION_KEYS
            }
            for role in ("admin", "teacher", "student", "parent")
        }
        return Response({"school_code": school_code, "effective": effective})

    def put(self, request, *args, **kwargs):
        serializer = PermissionMatrixSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = update_permission_matrix(request.actor, serializer.validated_data["matrix"])
        return _result_response(result)


class MyPermissionsView(APIView):
    permission_classes = [permissions.IsAuthenticated, HasSchoolPermission]

    def get(self, request, *args, **kwargs):
        actor = request.actor
        return Response({
            "school_code": actor.school_code,
            "role": actor.role,
            "permissions": {key: actor.has(key) for key in PERMISSION_KEYS},
        })
