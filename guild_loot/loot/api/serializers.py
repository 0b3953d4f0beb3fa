from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers

from ..kill_service import get_kill_manager
from ..models import (
    Application, AttendeeRequest, Auction, Bid, Boss, BossKill, DroppedItem, KillScreenshot,
    Notification, Vote, VoteOption,
)

User = get_user_model()


class BossSerializer(serializers.ModelSerializer):
    class Meta:
        model = Boss
        fields = ['id', 'name', 'description', 'dkp_points', 'created_at']
        read_only_fields = ['created_at']


class DroppedItemSerializer(serializers.ModelSerializer):
    item_type_display = serializers.CharField(source='get_item_type_display', read_only=True)

    class Meta:
        model = DroppedItem
        fields = [
            'id', 'name', 'item_type', 'item_type_display', 'level', 'apply_deadline',
            'final_recipient', 'status', 'expired_at', 'resolved_at',
        ]
        read_only_fields = fields


class KillScreenshotSerializer(serializers.ModelSerializer):
    class Meta:
        model = KillScreenshot
        fields = ['id', 'image', 'uploaded_at']
        read_only_fields = fields


class BossKillSerializer(serializers.ModelSerializer):
    boss_name = serializers.CharField(source='boss.name', read_only=True)
    items = DroppedItemSerializer(many=True, read_only=True)
    screenshots = KillScreenshotSerializer(many=True, read_only=True)
    final_recipients = serializers.ListField(child=serializers.CharField(), read_only=True)
    created_by = serializers.StringRelatedField()
    can_supplement = serializers.SerializerMethodField()
    remaining_supplement_hours = serializers.SerializerMethodField()

    class Meta:
        model = BossKill
        fields = [
            'id', 'boss', 'boss_name', 'kill_time', 'attendees', 'item_holder', 'status',
            'dkp_distributed', 'items', 'screenshots', 'final_recipients',
            'can_supplement', 'remaining_supplement_hours', 'created_by', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def _supplement_window(self, obj):
        cache = self.context.setdefault('supplement_windows', {})
        if obj.pk not in cache:
            cache[obj.pk] = get_kill_manager().supplement_window(obj)
        return cache[obj.pk]

    def get_can_supplement(self, obj):
        return self._supplement_window(obj)[0]

    def get_remaining_supplement_hours(self, obj):
        return self._supplement_window(obj)[1]


class BossKillCreateSerializer(serializers.Serializer):
    """
    Input for recording a kill. ``attendees`` and ``items`` may arrive as
    JSON strings when the request is multipart with screenshots attached.
    """
    boss = serializers.PrimaryKeyRelatedField(queryset=Boss.objects.all())
    kill_time = serializers.DateTimeField(required=False)
    attendees = serializers.JSONField()
    items = serializers.JSONField()
    item_holder = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    apply_deadline_hours = serializers.IntegerField(min_value=1, required=False)

    def validate_attendees(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError('Expected a list of character names')
        return value

    def validate_items(self, value):
        if not isinstance(value, list) or not value:
            raise serializers.ValidationError('Expected a non-empty list of items')
        return value


class BossKillUpdateSerializer(serializers.Serializer):
    attendees = serializers.JSONField(required=False)
    item_holder = serializers.CharField(max_length=64, required=False, allow_blank=True)
    items = serializers.JSONField(required=False)

    def validate_items(self, value):
        if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
            raise serializers.ValidationError('Expected a list of item changes')
        return value


class ApplicationSerializer(serializers.ModelSerializer):
    applicant_name = serializers.CharField(source='applicant.display_name', read_only=True)
    resolved_by = serializers.StringRelatedField()

    class Meta:
        model = Application
        fields = [
            'id', 'applicant', 'applicant_name', 'kill', 'item', 'item_name',
            'status', 'resolved_by', 'resolved_at', 'created_at',
        ]
        read_only_fields = fields


class ApplicationCreateSerializer(serializers.Serializer):
    kill_id = serializers.IntegerField()
    item_id = serializers.CharField()


class AttendeeRequestSerializer(serializers.ModelSerializer):
    resolved_by = serializers.StringRelatedField()

    class Meta:
        model = AttendeeRequest
        fields = [
            'id', 'user', 'kill', 'character_name', 'proof_image', 'reason',
            'status', 'comment', 'resolved_by', 'resolved_at', 'created_at',
        ]
        read_only_fields = fields


class AttendeeRequestCreateSerializer(serializers.Serializer):
    kill_id = serializers.IntegerField()
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    proof_image = serializers.FileField(required=False)


class AttendeeRequestResolveSerializer(serializers.Serializer):
    approve = serializers.BooleanField()
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class AuctionSerializer(serializers.ModelSerializer):
    """
    Blind auctions hide the leading price and bidder until they finish.
    """
    kill_id = serializers.IntegerField(source='kill.id', read_only=True)
    item_id = serializers.IntegerField(source='item.id', read_only=True)
    highest_bidder_name = serializers.SerializerMethodField()
    created_by = serializers.StringRelatedField()
    restrictions = serializers.SerializerMethodField()
    bid_count = serializers.SerializerMethodField()

    class Meta:
        model = Auction
        fields = [
            'id', 'kill_id', 'item_id', 'item_name', 'auction_type', 'starting_price',
            'current_price', 'buyout_price', 'end_time', 'created_by', 'item_holder',
            'highest_bidder', 'highest_bidder_name', 'status', 'restrictions', 'bid_count',
            'completed_at', 'settled_at', 'created_at',
        ]
        read_only_fields = fields

    def get_highest_bidder_name(self, obj):
        return obj.highest_bidder.display_name if obj.highest_bidder else None

    def get_restrictions(self, obj):
        return {
            'same_world': obj.same_world,
            'has_attended': obj.has_attended,
            'same_guild': obj.same_guild,
            'dkp_threshold': str(obj.dkp_threshold),
        }

    def get_bid_count(self, obj):
        return obj.bids.count()

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if instance.auction_type == Auction.TYPE_BLIND and instance.status == Auction.STATUS_ACTIVE:
            data['current_price'] = None
            data['highest_bidder'] = None
            data['highest_bidder_name'] = None
        return data


class AuctionRestrictionsSerializer(serializers.Serializer):
    same_world = serializers.BooleanField(required=False, default=False)
    has_attended = serializers.BooleanField(required=False, default=False)
    same_guild = serializers.BooleanField(required=False, default=False)
    dkp_threshold = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.00'),
        required=False,
        default=Decimal('0.00'),
    )


class AuctionCreateSerializer(serializers.Serializer):
    """Prices are range-checked by the auction service."""
    item_id = serializers.IntegerField()
    starting_price = serializers.IntegerField()
    buyout_price = serializers.IntegerField(required=False, allow_null=True)
    auction_type = serializers.ChoiceField(choices=Auction.TYPE_CHOICES, default=Auction.TYPE_OPEN)
    duration_hours = serializers.FloatField(required=False)
    end_time = serializers.DateTimeField(required=False)
    restrictions = AuctionRestrictionsSerializer(required=False)


class BidSerializer(serializers.ModelSerializer):
    bidder_name = serializers.CharField(source='bidder.display_name', read_only=True)

    class Meta:
        model = Bid
        fields = ['id', 'auction', 'bidder', 'bidder_name', 'amount', 'hold_status', 'created_at']
        read_only_fields = fields


class BidCreateSerializer(serializers.Serializer):
    amount = serializers.IntegerField(required=False)
    idempotency_key = serializers.CharField(max_length=64, required=False, allow_blank=True)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'message', 'auction', 'vote', 'read', 'created_at']
        read_only_fields = fields


class VoteOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = VoteOption
        fields = ['id', 'text']


class VoteSerializer(serializers.ModelSerializer):
    options = VoteOptionSerializer(many=True, read_only=True)
    created_by = serializers.StringRelatedField()
    has_voted = serializers.SerializerMethodField()

    class Meta:
        model = Vote
        fields = [
            'id', 'title', 'description', 'multiple_choice', 'end_time', 'status',
            'options', 'has_voted', 'created_by', 'closed_at', 'created_at',
        ]
        read_only_fields = fields

    def get_has_voted(self, obj):
        request = self.context.get('request')
        if request is None or not request.user.is_authenticated:
            return False
        return obj.ballots.filter(user=request.user).exists()


class VoteCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    options = serializers.ListField(child=serializers.CharField(max_length=200))
    end_time = serializers.DateTimeField()
    multiple_choice = serializers.BooleanField(required=False, default=False)


class CastVoteSerializer(serializers.Serializer):
    option_ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    option_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        option_ids = list(attrs.get('option_ids') or [])
        if attrs.get('option_id') is not None:
            option_ids.append(attrs['option_id'])
        if not option_ids:
            raise serializers.ValidationError({'option_ids': 'Choose at least one option'})
        attrs['option_ids'] = option_ids
        return attrs
