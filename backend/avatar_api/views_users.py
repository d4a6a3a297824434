# avatar_api/views_users.py
from django.http import JsonResponse
from rest_framework.decorators import api_view

from .models import Avatar, GeneratedImage
from .serializers import serialize_image, serialize_user

RECENT_IMAGES = 5


@api_view(['GET'])
def stats(request):
    """Totales del usuario + últimas imágenes publicadas."""
    avatars = Avatar.objects.accessible_to(request.user).visible()
    published = (
        GeneratedImage.objects.select_related('avatar')
        .filter(status=GeneratedImage.STATUS_PUBLISHED, avatar__in=avatars)
        .order_by('-created_at')
    )

    return JsonResponse({
        'totalImages': published.count(),
        'totalAvatars': avatars.count(),
        'recentImages': [serialize_image(img) for img in published[:RECENT_IMAGES]],
        'user': serialize_user(request.user),
    })
