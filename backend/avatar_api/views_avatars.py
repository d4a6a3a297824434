# avatar_api/views_avatars.py
import logging

from django.db import IntegrityError, transaction
from django.http import JsonResponse
from rest_framework import status
from rest_framework.decorators import api_view

from .exceptions import error_response, validation_error_response
from .models import Avatar
from .serializers import AvatarSerializer

logger = logging.getLogger(__name__)


def _get_avatar(request, avatar_id):
    """Avatar accesible para el usuario; None si no existe o no es suyo."""
    return Avatar.objects.accessible_to(request.user).filter(pk=avatar_id).first()


def _not_found():
    return error_response('not_found', 'Avatar not found', status.HTTP_404_NOT_FOUND)


def _duplicate_url():
    return error_response(
        'validation_error',
        'This Replicate model URL is already in use',
        status.HTTP_400_BAD_REQUEST,
        details={'replicateModelUrl': ['This Replicate model URL is already in use']},
    )


@api_view(['GET', 'POST'])
def avatars(request):
    """
    GET: Avatares visibles accesibles para el usuario
    POST: Crea un avatar nuevo
    """
    if request.method == 'GET':
        queryset = (
            Avatar.objects.accessible_to(request.user)
            .visible()
            .order_by('-created_at')
        )
        serializer = AvatarSerializer(queryset, many=True)
        return JsonResponse({
            'avatars': serializer.data,
            'count': len(serializer.data),
        })

    serializer = AvatarSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    try:
        # Los avatares nuevos no quedan ligados a ningún contacto
        with transaction.atomic():
            avatar = serializer.save(contact=None)
    except IntegrityError:
        # Carrera con otro alta de la misma URL entre la validación y el insert
        return _duplicate_url()

    logger.info("[Avatars] Avatar %s creado (%s)", avatar.pk, avatar.full_name)
    return JsonResponse({
        'message': 'Avatar created successfully',
        'avatar': AvatarSerializer(avatar).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
def avatar_detail(request, avatar_id):
    avatar = _get_avatar(request, avatar_id)
    if avatar is None:
        return _not_found()

    if request.method == 'GET':
        return JsonResponse({'avatar': AvatarSerializer(avatar).data})

    if request.method == 'PUT':
        serializer = AvatarSerializer(avatar, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        try:
            with transaction.atomic():
                avatar = serializer.save()
        except IntegrityError:
            return _duplicate_url()

        logger.info("[Avatars] Avatar %s actualizado", avatar.pk)
        return JsonResponse({
            'message': 'Avatar updated successfully',
            'avatar': AvatarSerializer(avatar).data,
        })

    # DELETE: las imágenes se borran en cascada (solo filas, no blobs)
    avatar_pk = avatar.pk
    avatar.delete()
    logger.info("[Avatars] Avatar %s borrado", avatar_pk)
    return JsonResponse({'message': 'Avatar deleted successfully'})
