"""
Wallet and ledger serializers.
"""

from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers

from ..models import LedgerEntry, Wallet

User = get_user_model()


class WalletSerializer(serializers.ModelSerializer):
    """Serializer for a user's balances."""

    user_id = serializers.IntegerField(source='user.id', read_only=True)
    character_name = serializers.CharField(source='user.character_name', read_only=True)
    available_diamonds = serializers.IntegerField(read_only=True)

    class Meta:
        model = Wallet
        fields = [
            'user_id', 'character_name', 'diamonds', 'held_diamonds',
            'available_diamonds', 'dkp_points', 'updated_at',
        ]
        read_only_fields = fields


class LedgerEntrySerializer(serializers.ModelSerializer):
    """Serializer for ledger entries."""

    user_id = serializers.IntegerField(source='user.id', read_only=True)
    entry_type_display = serializers.CharField(source='get_entry_type_display', read_only=True)
    created_by = serializers.StringRelatedField()

    class Meta:
        model = LedgerEntry
        fields = [
            'id', 'user_id', 'currency', 'entry_type', 'entry_type_display',
            'amount', 'description', 'reference', 'created_by', 'created_at',
        ]
        read_only_fields = fields


class AdjustmentSerializer(serializers.Serializer):
    """Manual balance adjustment made by an admin."""

    ACTIONS = [
        ('credit', 'Credit'),
        ('debit', 'Debit'),
    ]

    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    currency = serializers.ChoiceField(choices=LedgerEntry.CURRENCY_CHOICES)
    action = serializers.ChoiceField(choices=ACTIONS, default='credit')
    amount = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal('0.01'),
    )
    description = serializers.CharField(max_length=255)

    def validate(self, attrs):
        if attrs['currency'] == LedgerEntry.CURRENCY_DIAMONDS and attrs['amount'] != attrs['amount'].to_integral_value():
            raise serializers.ValidationError({'amount': 'Diamond amounts must be whole numbers'})
        return attrs
