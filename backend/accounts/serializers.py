from rest_framework import serializers

from accounts.identity import ROLE_TAGS


class ProvisionUserSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=sorted(ROLE_TAGS))
    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    # Free-form on purpose: DD/MM/YYYY, YYYY-MM-DD, DDMMYYYY and friends
    date_of_birth = serializers.CharField(max_length=32, required=False, allow_blank=True)


class PermissionMatrixSerializer(serializers.Serializer):
    matrix = serializers.DictField(
        child=serializers.DictField(child=serializers.JSONField()),
    )


class ResolveSchoolSerializer(serializers.Serializer):
    identifier = serializers.CharField(max_length=255)
