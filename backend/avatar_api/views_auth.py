# avatar_api/views_auth.py
import logging

from django.contrib.auth import authenticate
from django.http import JsonResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny

from .authentication import issue_token
from .exceptions import error_response, validation_error_response
from .serializers import (
    LoginSerializer,
    ProfileUpdateSerializer,
    RegisterSerializer,
    serialize_user,
)

logger = logging.getLogger(__name__)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def health_check(request):
    return JsonResponse({
        'status': 'ok',
        'timestamp': timezone.now().isoformat(),
    })


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def register(request):
    serializer = RegisterSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    user = serializer.save()
    logger.info("[Auth] Usuario registrado: %s", user.pk)
    return JsonResponse({
        'message': 'User registered successfully',
        'token': issue_token(user),
        'user': serialize_user(user),
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def login(request):
    serializer = LoginSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = serializer.validated_data
    user = authenticate(request, username=data['email'], password=data['password'])
    if user is None:
        # Mismo mensaje para email desconocido y contraseña incorrecta
        return error_response('invalid_credentials', 'Invalid email or password', status.HTTP_401_UNAUTHORIZED)

    logger.info("[Auth] Login correcto: %s", user.pk)
    return JsonResponse({
        'message': 'Login successful',
        'token': issue_token(user),
        'user': serialize_user(user),
    })


@api_view(['GET'])
def me(request):
    return JsonResponse({'user': serialize_user(request.user)})


@api_view(['PUT'])
def update_profile(request):
    serializer = ProfileUpdateSerializer(data=request.data, context={'user': request.user})
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    user = serializer.save()
    logger.info("[Auth] Perfil actualizado: %s", user.pk)
    return JsonResponse({
        'message': 'Profile updated successfully',
        'user': serialize_user(user),
    })
