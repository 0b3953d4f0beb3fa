"""
Wallet and ledger API views.
"""

import logging

from rest_framework import filters, mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from guild_loot.loot.permissions import MANAGE_WALLETS, CanManageWallets, has_capability

from ..models import LedgerEntry, WalletManager
from .serializers import AdjustmentSerializer, LedgerEntrySerializer, WalletSerializer

logger = logging.getLogger(__name__)


class WalletViewSet(viewsets.ViewSet):
    """
    The signed-in user's balances.
    """

    def list(self, request):
        wallet = WalletManager.get_wallet(request.user)
        return Response(WalletSerializer(wallet).data)


class LedgerEntryViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    Ledger history. Members see their own entries; wallet managers may
    filter by any user and post manual adjustments.
    """
    serializer_class = LedgerEntrySerializer
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ['created_at', 'amount']
    ordering = ['-created_at']

    def get_queryset(self):
        queryset = LedgerEntry.objects.select_related('user', 'created_by')

        user_id = self.request.query_params.get('user_id')
        if user_id and has_capability(self.request.user, MANAGE_WALLETS):
            queryset = queryset.filter(user_id=user_id)
        else:
            queryset = queryset.filter(user=self.request.user)

        currency = self.request.query_params.get('currency')
        if currency:
            queryset = queryset.filter(currency=currency)

        entry_type = self.request.query_params.get('entry_type')
        if entry_type:
            queryset = queryset.filter(entry_type=entry_type)

        return queryset

    @action(detail=False, methods=['post'], permission_classes=[CanManageWallets])
    def adjust(self, request):
        """Credit or debit a user's diamonds or DKP."""
        serializer = AdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = data['user']
        amount = data['amount']
        reference = f"adjustment:{request.user.pk}"

        if data['currency'] == LedgerEntry.CURRENCY_DIAMONDS:
            if data['action'] == 'credit':
                wallet = WalletManager.credit(user, int(amount), reference, data['description'], request.user)
            else:
                wallet = WalletManager.debit(user, int(amount), reference, data['description'], request.user)
        elif data['action'] == 'credit':
            wallet = WalletManager.award_dkp(
                user, amount, LedgerEntry.ADJUSTMENT, data['description'], reference, request.user
            )
        else:
            wallet = WalletManager.deduct_dkp(user, amount, data['description'], reference, request.user)

        logger.info(
            f"{request.user} made a {data['action']} of {amount} {data['currency']} for {user}"
        )
        return Response(WalletSerializer(wallet).data, status=status.HTTP_201_CREATED)
