"""
Loot API views. Views parse input and delegate every state change to the
service managers; domain errors are rendered by ``loot_exception_handler``.
"""

import logging

from rest_framework import filters, mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..application_service import get_application_manager
from ..attendee_service import get_attendee_request_manager
from ..auction_service import get_auction_manager
from ..exceptions import NotFound
from ..kill_service import get_kill_manager
from ..models import Application, AttendeeRequest, Auction, Boss, BossKill, Notification, Vote
from ..notification_service import NotificationService
from ..permissions import (
    MANAGE_AUCTIONS, MANAGE_KILLS, RESOLVE_APPLICATIONS,
    CanManageAuctions, CanManageVotes, CanResolveApplications, CanViewAdminCounts,
    IsReadOnlyOrCanManageKills, has_capability,
)
from ..vote_service import get_vote_manager
from .serializers import (
    ApplicationCreateSerializer, ApplicationSerializer, AttendeeRequestCreateSerializer,
    AttendeeRequestResolveSerializer, AttendeeRequestSerializer, AuctionCreateSerializer,
    AuctionSerializer, BidCreateSerializer, BidSerializer, BossKillCreateSerializer,
    BossKillSerializer, BossKillUpdateSerializer, BossSerializer, CastVoteSerializer,
    DroppedItemSerializer, NotificationSerializer, VoteCreateSerializer, VoteSerializer,
)

logger = logging.getLogger(__name__)


class BossViewSet(viewsets.ModelViewSet):
    """
    ViewSet for bosses.
    Signed-in users can read; kill managers can edit.
    """
    queryset = Boss.objects.all()
    serializer_class = BossSerializer
    lookup_value_regex = r'\d+'
    permission_classes = [IsReadOnlyOrCanManageKills]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['name']
    ordering_fields = ['name', 'dkp_points', 'created_at']
    ordering = ['name']

    def perform_destroy(self, instance):
        get_kill_manager().delete_boss(instance, self.request.user)


class BossKillViewSet(viewsets.ModelViewSet):
    """
    ViewSet for kills and their dropped items.
    """
    queryset = BossKill.objects.select_related('boss', 'created_by').prefetch_related('items', 'screenshots')
    serializer_class = BossKillSerializer
    lookup_value_regex = r'\d+'
    permission_classes = [IsReadOnlyOrCanManageKills]
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ['kill_time', 'created_at']
    ordering = ['-kill_time']

    def get_queryset(self):
        queryset = super().get_queryset()

        kill_status = self.request.query_params.get('status')
        if kill_status:
            queryset = queryset.filter(status=kill_status)

        boss_id = self.request.query_params.get('boss')
        if boss_id:
            queryset = queryset.filter(boss_id=boss_id)

        return queryset

    def create(self, request, *args, **kwargs):
        serializer = BossKillCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kill = get_kill_manager().create_kill(
            request.user,
            data['boss'],
            data['items'],
            data['attendees'],
            kill_time=data.get('kill_time'),
            item_holder=data.get('item_holder', ''),
            apply_deadline_hours=data.get('apply_deadline_hours'),
            screenshots=request.FILES.getlist('screenshots'),
        )
        return Response(
            self.get_serializer(self.get_queryset().get(pk=kill.pk)).data,
            status=status.HTTP_201_CREATED
        )

    def update(self, request, *args, **kwargs):
        kill = self.get_object()
        serializer = BossKillUpdateSerializer(data=request.data, partial=kwargs.get('partial', False))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kill = get_kill_manager().update_kill(
            kill,
            request.user,
            attendees=data.get('attendees'),
            item_holder=data.get('item_holder'),
            items=data.get('items'),
        )
        return Response(self.get_serializer(self.get_queryset().get(pk=kill.pk)).data)

    def perform_destroy(self, instance):
        get_kill_manager().delete_kill(instance, self.request.user)

    @action(detail=True, methods=['post'], url_path='distribute-dkp')
    def distribute_dkp(self, request, pk=None):
        """Pay the boss's DKP to the kill's attendees."""
        kill = self.get_object()
        credited = get_kill_manager().distribute_dkp(kill, request.user)
        return Response({
            'kill_id': kill.pk,
            'credited_users': credited,
            'points': str(kill.boss.dkp_points),
        })

    @action(detail=True, methods=['post'], url_path=r'items/(?P<item_id>\d+)/expire')
    def expire_item(self, request, pk=None, item_id=None):
        """Expire one item ahead of its deadline."""
        kill = self.get_object()
        item = get_kill_manager().expire_item_manually(request.user, kill, item_id)
        return Response(DroppedItemSerializer(item).data)

    @action(detail=True, methods=['get'])
    def applications(self, request, pk=None):
        kill = self.get_object()
        queryset = kill.applications.select_related('applicant', 'resolved_by')
        return Response(ApplicationSerializer(queryset, many=True).data)


class ApplicationViewSet(mixins.ListModelMixin,
                         mixins.RetrieveModelMixin,
                         viewsets.GenericViewSet):
    """
    Item applications. Members see their own; reviewers see all of them.
    """
    serializer_class = ApplicationSerializer
    lookup_value_regex = r'\d+'
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ['created_at', 'status']
    ordering = ['-created_at']

    def get_queryset(self):
        queryset = Application.objects.select_related('applicant', 'resolved_by')
        if not has_capability(self.request.user, RESOLVE_APPLICATIONS):
            queryset = queryset.filter(applicant=self.request.user)

        application_status = self.request.query_params.get('status')
        if application_status:
            queryset = queryset.filter(status=application_status)

        kill_id = self.request.query_params.get('kill')
        if kill_id:
            queryset = queryset.filter(kill_id=kill_id)

        return queryset

    def create(self, request):
        serializer = ApplicationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        application = get_application_manager().submit(
            request.user,
            serializer.validated_data['kill_id'],
            serializer.validated_data['item_id'],
        )
        return Response(ApplicationSerializer(application).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def mine(self, request):
        queryset = Application.objects.filter(applicant=request.user).select_related('resolved_by')
        return Response(ApplicationSerializer(queryset, many=True).data)

    @action(detail=False, methods=['get'], url_path='pending-count', permission_classes=[CanViewAdminCounts])
    def pending_count(self, request):
        return Response({'count': get_application_manager().pending_count()})

    @action(detail=True, methods=['post', 'put'], permission_classes=[CanResolveApplications])
    def approve(self, request, pk=None):
        resolution = get_application_manager().approve(request.user, pk)
        return Response({
            'application': ApplicationSerializer(resolution.application).data,
            'item': DroppedItemSerializer(resolution.item).data,
            'rejected_count': resolution.rejected_count,
        })

    @action(detail=True, methods=['post', 'put'], permission_classes=[CanResolveApplications])
    def reject(self, request, pk=None):
        application = get_application_manager().reject(request.user, pk)
        return Response(ApplicationSerializer(application).data)


class AttendeeRequestViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = AttendeeRequestSerializer
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        queryset = AttendeeRequest.objects.select_related('resolved_by')
        if not has_capability(self.request.user, MANAGE_KILLS):
            queryset = queryset.filter(user=self.request.user)

        request_status = self.request.query_params.get('status')
        if request_status:
            queryset = queryset.filter(status=request_status)
        return queryset

    def create(self, request):
        serializer = AttendeeRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        attendee_request = get_attendee_request_manager().submit(
            request.user,
            data['kill_id'],
            reason=data.get('reason', ''),
            proof_image=data.get('proof_image'),
        )
        return Response(AttendeeRequestSerializer(attendee_request).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        """Approve or reject a request."""
        serializer = AttendeeRequestResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        attendee_request = get_attendee_request_manager().resolve(
            request.user,
            pk,
            serializer.validated_data['approve'],
            comment=serializer.validated_data.get('comment', ''),
        )
        return Response(AttendeeRequestSerializer(attendee_request).data)


class AuctionViewSet(mixins.ListModelMixin,
                     mixins.RetrieveModelMixin,
                     viewsets.GenericViewSet):
    """
    ViewSet for auctions and bidding.
    """
    queryset = Auction.objects.select_related('created_by', 'highest_bidder', 'kill', 'item')
    serializer_class = AuctionSerializer
    lookup_value_regex = r'\d+'
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ['end_time', 'created_at']
    ordering = ['-created_at']

    def get_queryset(self):
        queryset = super().get_queryset()

        auction_status = self.request.query_params.get('status')
        if auction_status:
            queryset = queryset.filter(status=auction_status)

        auction_type = self.request.query_params.get('type')
        if auction_type:
            queryset = queryset.filter(auction_type=auction_type)

        return queryset

    def get_permissions(self):
        if self.action in ['create', 'cancel']:
            return [CanManageAuctions()]
        if self.action == 'pending_count':
            return [CanViewAdminCounts()]
        return super().get_permissions()

    def create(self, request):
        serializer = AuctionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        auction = get_auction_manager().create_auction(
            request.user,
            data['item_id'],
            data['starting_price'],
            duration_hours=data.get('duration_hours'),
            end_time=data.get('end_time'),
            auction_type=data['auction_type'],
            buyout_price=data.get('buyout_price'),
            restrictions=data.get('restrictions'),
        )
        return Response(AuctionSerializer(auction).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def bid(self, request, pk=None):
        """
        Place a bid. The idempotency key may come in the body or in the
        ``Idempotency-Key`` header.
        """
        serializer = BidCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        key = serializer.validated_data.get('idempotency_key') or request.headers.get('Idempotency-Key')

        bid = get_auction_manager().place_bid(
            pk,
            request.user,
            serializer.validated_data.get('amount'),
            idempotency_key=key,
        )
        auction = self.get_queryset().get(pk=bid.auction_id)
        return Response(
            {'bid': BidSerializer(bid).data, 'auction': AuctionSerializer(auction).data},
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['get'])
    def bids(self, request, pk=None):
        """Bid history. Blind auctions only show a member's own bids until they finish."""
        auction = self.get_object()
        queryset = auction.bids.select_related('bidder')
        hidden = auction.auction_type == Auction.TYPE_BLIND and auction.status == Auction.STATUS_ACTIVE
        if hidden and not has_capability(request.user, MANAGE_AUCTIONS):
            queryset = queryset.filter(bidder=request.user)
        return Response(BidSerializer(queryset, many=True).data)

    @action(detail=True, methods=['put', 'post'])
    def cancel(self, request, pk=None):
        auction = get_auction_manager().cancel_auction(request.user, pk)
        return Response(AuctionSerializer(auction).data)

    @action(detail=True, methods=['put', 'post'], url_path='confirm-delivery')
    def confirm_delivery(self, request, pk=None):
        auction = get_auction_manager().confirm_delivery(request.user, pk)
        return Response(AuctionSerializer(auction).data)

    @action(detail=False, methods=['get'], url_path='pending-count')
    def pending_count(self, request):
        return Response({'count': get_auction_manager().pending_count()})

    @action(detail=False, methods=['get'])
    def won(self, request):
        queryset = self.get_queryset().filter(
            highest_bidder=request.user,
            status__in=[Auction.STATUS_COMPLETED, Auction.STATUS_SETTLED],
        )
        return Response(AuctionSerializer(queryset, many=True).data)


class ItemViewSet(viewsets.ViewSet):

    @action(detail=False, methods=['get'])
    def auctionable(self, request):
        """Expired, unclaimed items that can be put up for auction."""
        items = get_auction_manager().auctionable_items()
        data = []
        for item in items:
            entry = DroppedItemSerializer(item).data
            entry['kill_id'] = item.kill_id
            entry['boss_name'] = item.kill.boss.name
            entry['item_holder'] = item.kill.item_holder
            data.append(entry)
        return Response(data)


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user)
        if self.request.query_params.get('unread') in ('1', 'true'):
            queryset = queryset.filter(read=False)
        return queryset

    @action(detail=True, methods=['put', 'post'])
    def read(self, request, pk=None):
        if not NotificationService.mark_read(request.user, pk):
            raise NotFound("Notification not found")
        return Response({'id': int(pk), 'read': True})


class VoteViewSet(mixins.ListModelMixin,
                  mixins.RetrieveModelMixin,
                  viewsets.GenericViewSet):
    queryset = Vote.objects.prefetch_related('options').select_related('created_by')
    serializer_class = VoteSerializer
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        queryset = super().get_queryset()
        vote_status = self.request.query_params.get('status')
        if vote_status:
            queryset = queryset.filter(status=vote_status)
        return queryset

    def get_permissions(self):
        if self.action == 'create':
            return [CanManageVotes()]
        return [permissions.IsAuthenticated()]

    def create(self, request):
        serializer = VoteCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        vote = get_vote_manager().create_vote(
            request.user,
            data['title'],
            data['options'],
            data['end_time'],
            description=data.get('description', ''),
            multiple_choice=data.get('multiple_choice', False),
        )
        return Response(
            VoteSerializer(vote, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'])
    def cast(self, request, pk=None):
        serializer = CastVoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ballots = get_vote_manager().cast(request.user, pk, serializer.validated_data['option_ids'])
        return Response(
            {'vote_id': int(pk), 'option_ids': [ballot.option_id for ballot in ballots]},
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['get'])
    def results(self, request, pk=None):
        vote = self.get_object()
        return Response({
            'vote_id': vote.pk,
            'status': vote.status,
            'results': get_vote_manager().results(vote),
        })
