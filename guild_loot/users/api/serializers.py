from django.contrib.auth import get_user_model
from rest_framework import serializers

from ..models import Guild

User = get_user_model()


class GuildSummarySerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    apply_deadline_hours = serializers.IntegerField()
    public_fund_rate = serializers.DecimalField(max_digits=4, decimal_places=3)


class UserSerializer(serializers.ModelSerializer):
    guild = GuildSummarySerializer(read_only=True)
    role_display = serializers.CharField(source='get_role_display_name', read_only=True)

    class Meta:
        model = User
        fields = [
            "id", "username", "name", "character_name", "world_name",
            "role_group", "role_display", "status", "guild", "last_login",
        ]
        read_only_fields = fields


class LoginSerializer(serializers.Serializer):
    """Accepts either the account username or the character name."""

    username = serializers.CharField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)


class GuildListSerializer(serializers.ModelSerializer):
    class Meta:
        model = Guild
        fields = ["id", "name"]
        read_only_fields = fields


class GuildSerializer(serializers.ModelSerializer):
    """Guild settings. Range checks come from the model field validators."""

    member_count = serializers.IntegerField(source="members.count", read_only=True)

    class Meta:
        model = Guild
        fields = [
            "id", "name", "announcement", "apply_deadline_hours", "public_fund_rate",
            "withdraw_min_amount", "member_count", "created_at",
        ]
        read_only_fields = ["id", "member_count", "created_at"]
