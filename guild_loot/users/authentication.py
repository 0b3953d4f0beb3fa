"""
JWT authentication for the REST API.

Clients send the token in an ``x-auth-token`` header; a standard
``Authorization: Bearer`` header is accepted as well.
"""

import logging
from datetime import timedelta

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication

logger = logging.getLogger(__name__)

TOKEN_HEADER = 'HTTP_X_AUTH_TOKEN'


def _jwt_secret():
    return getattr(settings, 'JWT_SECRET', None) or settings.SECRET_KEY


def issue_token(user) -> str:
    """Create a signed token for ``user``.

    Args:
        user: Authenticated user

    Returns:
        str: Encoded JWT
    """
    now = timezone.now()
    hours = getattr(settings, 'JWT_EXPIRATION_HOURS', 24)
    payload = {
        'user_id': user.pk,
        'role': user.role_group,
        'iat': int(now.timestamp()),
        'exp': int((now + timedelta(hours=hours)).timestamp()),
    }
    return jwt.encode(
        payload,
        _jwt_secret(),
        algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256'),
    )


def decode_token(token: str) -> dict:
    return jwt.decode(
        token,
        _jwt_secret(),
        algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')],
    )


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying a JWT issued by ``issue_token``.
    """

    def get_token(self, request):
        token = request.META.get(TOKEN_HEADER)
        if token:
            return token.strip()

        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if auth_header.startswith('Bearer '):
            return auth_header[7:].strip()
        return None

    def authenticate(self, request):
        token = self.get_token(request)
        if not token:
            return None

        try:
            payload = decode_token(token)
        except jwt.ExpiredSignatureError:
            raise exceptions.AuthenticationFailed('Token has expired')
        except jwt.InvalidTokenError:
            logger.warning("Rejected request with an invalid token")
            raise exceptions.AuthenticationFailed('Invalid token')

        User = get_user_model()
        user = User.objects.filter(pk=payload.get('user_id')).select_related('guild').first()
        if user is None:
            raise exceptions.AuthenticationFailed('User not found')
        if not user.is_active or user.status == User.STATUS_DISABLED:
            raise exceptions.AuthenticationFailed('User account is disabled')

        return (user, token)

    def authenticate_header(self, request):
        return 'x-auth-token'
