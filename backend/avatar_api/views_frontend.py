# avatar_api/views_frontend.py
import logging

from django.conf import settings
from django.http import FileResponse, JsonResponse

logger = logging.getLogger(__name__)


def spa_index(request):
    """
    Sirve el index.html del build de React para cualquier ruta del SPA.
    Los assets (static/) los sirve WhiteNoise.
    """
    if request.method not in ('GET', 'HEAD'):
        return JsonResponse({'error': 'method_not_allowed', 'message': 'Method not allowed'}, status=405)

    index_path = settings.FRONTEND_BUILD_DIR / 'index.html'
    if not index_path.is_file():
        logger.warning("[Frontend] No existe %s (¿falta el build del frontend?)", index_path)
        return JsonResponse({'error': 'not_found', 'message': 'Frontend build not found'}, status=404)

    return FileResponse(open(index_path, 'rb'), content_type='text/html')
