import logging

from django.contrib.auth import authenticate, get_user_model
from django.contrib.auth.models import update_last_login
from rest_framework import exceptions, status
from rest_framework.decorators import action
from rest_framework.mixins import CreateModelMixin, ListModelMixin, RetrieveModelMixin, UpdateModelMixin
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import GenericViewSet

from guild_loot.loot.permissions import MANAGE_GUILDS, CanManageGuilds, has_capability

from ..authentication import issue_token
from ..menu import build_menu
from ..models import Guild
from .serializers import GuildListSerializer, GuildSerializer, LoginSerializer, UserSerializer

User = get_user_model()
logger = logging.getLogger(__name__)


class LoginView(APIView):
    """Exchange credentials for a token sent back in ``x-auth-token``."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def get_authenticate_header(self, request):
        # Keeps failed logins at 401 without authenticators
        return 'x-auth-token'

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        login_name = serializer.validated_data['username']
        password = serializer.validated_data['password']

        account = User.objects.get_by_character_name(login_name)
        username = account.username if account else login_name

        disabled = User.objects.filter(username=username, status=User.STATUS_DISABLED).exists()
        if disabled:
            logger.warning(f"Login attempt for disabled account {username}")
            raise exceptions.PermissionDenied('This account has been disabled')

        user = authenticate(request, username=username, password=password)
        if user is None:
            raise exceptions.AuthenticationFailed('Invalid username or password')

        update_last_login(None, user)
        logger.info(f"User {user.username} signed in")
        return Response(
            {'token': issue_token(user), 'user': UserSerializer(user).data},
            status=status.HTTP_200_OK
        )


class UserViewSet(RetrieveModelMixin, ListModelMixin, GenericViewSet):
    serializer_class = UserSerializer
    queryset = User.objects.select_related('guild').order_by('username')

    def get_queryset(self, *args, **kwargs):
        queryset = super().get_queryset()
        guild_id = self.request.query_params.get('guild')
        if guild_id:
            queryset = queryset.filter(guild_id=guild_id)
        return queryset

    @action(detail=False)
    def me(self, request):
        serializer = UserSerializer(request.user, context={"request": request})
        return Response(status=status.HTTP_200_OK, data=serializer.data)


class MenuView(APIView):
    """Navigation tree for the signed-in user."""

    def get(self, request):
        return Response({'menu': build_menu(request.user)})


class GuildViewSet(ListModelMixin,
                   RetrieveModelMixin,
                   CreateModelMixin,
                   UpdateModelMixin,
                   GenericViewSet):
    """
    Guilds and their settings. Everyone can list guild names; members read
    their own guild's settings; only guild managers create or change them.
    """
    queryset = Guild.objects.all()
    serializer_class = GuildSerializer
    lookup_value_regex = r'\d+'

    def get_permissions(self):
        if self.action in ['create', 'update', 'partial_update']:
            return [CanManageGuilds()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == 'list':
            return GuildListSerializer
        return GuildSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == 'retrieve' and not has_capability(self.request.user, MANAGE_GUILDS):
            queryset = queryset.filter(pk=self.request.user.guild_id)
        return queryset

    def perform_create(self, serializer):
        guild = serializer.save()
        if self.request.user.guild_id is None:
            self.request.user.guild = guild
            self.request.user.save(update_fields=['guild'])
        logger.info(f"Guild {guild.name} created by {self.request.user}")

    def perform_update(self, serializer):
        guild = serializer.save()
        logger.info(f"Guild {guild.name} settings updated by {self.request.user}: {serializer.validated_data}")

    @action(detail=False)
    def me(self, request):
        if request.user.guild_id is None:
            raise exceptions.NotFound('You do not belong to a guild')
        return Response(GuildSerializer(request.user.guild).data)
