# avatar_api/authentication.py
"""
Autenticación Bearer con tokens firmados por Django (django.core.signing).

El token lleva el id del usuario, se firma con SECRET_KEY y caduca a los
AUTH_TOKEN_MAX_AGE segundos. No hay tabla de tokens.
"""
import logging

from django.conf import settings
from django.contrib.auth.models import User
from django.core import signing
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

logger = logging.getLogger(__name__)

TOKEN_SALT = "avatar_api.auth.token"
KEYWORD = "Bearer"


def issue_token(user: User) -> str:
    return signing.dumps({"uid": user.pk}, salt=TOKEN_SALT, compress=True)


def user_for_token(token: str) -> User:
    try:
        payload = signing.loads(token, salt=TOKEN_SALT, max_age=settings.AUTH_TOKEN_MAX_AGE)
    except signing.SignatureExpired:
        raise exceptions.AuthenticationFailed("Token expired")
    except signing.BadSignature:
        raise exceptions.AuthenticationFailed("Invalid token")

    try:
        user = User.objects.select_related("profile").get(pk=payload.get("uid"))
    except User.DoesNotExist:
        raise exceptions.AuthenticationFailed("User not found")

    if not user.is_active:
        raise exceptions.AuthenticationFailed("User inactive")
    return user


class BearerTokenAuthentication(BaseAuthentication):
    """
    Authorization: Bearer <token>
    """

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != KEYWORD.lower().encode():
            return None

        if len(auth) != 2:
            raise exceptions.AuthenticationFailed("Invalid token header")

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed("Invalid token header")

        user = user_for_token(token)
        return user, token

    def authenticate_header(self, request):
        return KEYWORD
