# avatar_api/views_images.py
import logging

from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from sentry_sdk import capture_exception

from .exceptions import error_response, public_error_message, validation_error_response
from .models import Avatar, GeneratedImage
from .serializers import GenerateImageSerializer, PaginationSerializer, serialize_image
from .services import get_generator, get_storage
from .services import review
from .services.github_storage import StorageError
from .services.replicate_client import (
    GenerationAuthError,
    GenerationError,
    GenerationRateLimitError,
    GenerationValidationError,
)
from .throttling import ImageRateThrottle, IPRateThrottle

logger = logging.getLogger(__name__)

IMAGE_THROTTLES = [IPRateThrottle, ImageRateThrottle]


def _get_image(request, image_id):
    """Imagen de un avatar accesible; None si no existe o no es del usuario."""
    return (
        GeneratedImage.objects.select_related('avatar')
        .filter(pk=image_id, avatar__in=Avatar.objects.accessible_to(request.user))
        .first()
    )


def _image_not_found():
    return error_response('not_found', 'Image not found', status.HTTP_404_NOT_FOUND)


def _not_pending(exc):
    return error_response(exc.code, exc.message, status.HTTP_400_BAD_REQUEST)


def _internal_error(tag, exc, message):
    logger.exception("[%s] %s", tag, message)
    capture_exception(exc)
    return error_response(
        'internal_error',
        public_error_message(exc),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@api_view(['POST'])
@throttle_classes(IMAGE_THROTTLES)
def generate(request):
    """
    Genera imágenes con Replicate para un avatar y las deja pendientes de revisión.
    Body: { prompt, avatarId, lora_scale?, num_outputs?, aspect_ratio?, ... }
    """
    serializer = GenerateImageSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = serializer.validated_data
    avatar = (
        Avatar.objects.accessible_to(request.user)
        .visible()
        .filter(pk=data['avatarId'])
        .first()
    )
    if avatar is None:
        return error_response('not_found', 'Avatar not found or not accessible', status.HTTP_404_NOT_FOUND)

    try:
        generator = get_generator()
    except ImproperlyConfigured as e:
        logger.error("[Images] Replicate no configurado: %s", e)
        return error_response('replicate_not_configured', 'Replicate API token not configured',
                              status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        enhanced_prompt, images = review.generate_images(
            avatar,
            data['prompt'],
            serializer.to_params(),
            generator=generator,
            storage=get_storage(),
        )
    except GenerationValidationError as e:
        return error_response('validation_error', e.message, status.HTTP_400_BAD_REQUEST,
                              details={e.field: [e.message]})
    except GenerationAuthError:
        return error_response('invalid_replicate_token', 'Invalid Replicate API token',
                              status.HTTP_401_UNAUTHORIZED)
    except GenerationRateLimitError:
        return error_response('rate_limit_exceeded', 'Replicate rate limit exceeded. Please try again later.',
                              status.HTTP_429_TOO_MANY_REQUESTS)
    except GenerationError as e:
        return _internal_error('Images', e, 'Failed to generate images')

    return JsonResponse({
        'message': 'Images generated successfully - ready for review',
        'images': [serialize_image(img, include_avatar=False) for img in images],
        'count': len(images),
        'pendingReview': True,
        'prompt': enhanced_prompt,
        'avatar': {
            'id': str(avatar.pk),
            'fullName': avatar.full_name,
            'triggerWord': avatar.trigger_word,
        },
    })


@api_view(['GET'])
@throttle_classes(IMAGE_THROTTLES)
def history(request):
    """Imágenes publicadas (aprobadas) de los avatares del usuario, paginadas."""
    pagination = PaginationSerializer(data=request.query_params)
    if not pagination.is_valid():
        return validation_error_response(pagination.errors)
    page = pagination.validated_data['page']
    limit = pagination.validated_data['limit']

    queryset = (
        GeneratedImage.objects.select_related('avatar')
        .filter(
            status=GeneratedImage.STATUS_PUBLISHED,
            avatar__in=Avatar.objects.accessible_to(request.user),
        )
        .order_by('-created_at')
    )
    total = queryset.count()
    offset = (page - 1) * limit
    images = list(queryset[offset:offset + limit])

    return JsonResponse({
        'images': [serialize_image(img) for img in images],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    })


@api_view(['GET', 'DELETE'])
@throttle_classes(IMAGE_THROTTLES)
def image_detail(request, image_id):
    image = _get_image(request, image_id)
    if image is None:
        return _image_not_found()

    if request.method == 'GET':
        return JsonResponse({'image': serialize_image(image)})

    try:
        review.delete_image(image, storage=get_storage())
    except StorageError as e:
        return _internal_error('Images', e, 'Failed to delete image from storage')
    return JsonResponse({'message': 'Image deleted successfully'})


@api_view(['POST'])
@throttle_classes(IMAGE_THROTTLES)
def like(request, image_id):
    """Aprueba una imagen en staging (ya está subida, solo cambia el estado)."""
    image = _get_image(request, image_id)
    if image is None:
        return _image_not_found()

    try:
        review.approve_image(image)
    except review.NotPendingReview as e:
        return _not_pending(e)

    return JsonResponse({
        'message': 'Image approved successfully',
        'image': serialize_image(image),
    })


@api_view(['POST'])
@throttle_classes(IMAGE_THROTTLES)
def dislike(request, image_id):
    """Rechaza una imagen en staging: borra el blob y la fila."""
    image = _get_image(request, image_id)
    if image is None:
        return _image_not_found()

    try:
        review.reject_image(image, storage=get_storage())
    except review.NotPendingReview as e:
        return _not_pending(e)
    except StorageError as e:
        return _internal_error('Images', e, 'Failed to delete image from storage')

    return JsonResponse({'message': 'Image rejected and deleted successfully'})


@api_view(['POST'])
@throttle_classes(IMAGE_THROTTLES)
def download(request, image_id):
    """Aprueba la imagen y devuelve la URL y el nombre de fichero para descargarla."""
    image = _get_image(request, image_id)
    if image is None:
        return _image_not_found()

    try:
        filename, url = review.download_image(image)
    except review.NotPendingReview as e:
        return _not_pending(e)

    return JsonResponse({
        'message': 'Image ready for download',
        'downloadUrl': url,
        'filename': filename,
        'image': serialize_image(image),
    })
