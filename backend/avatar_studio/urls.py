from django.contrib import admin
from django.urls import path, include, re_path
from django.http import JsonResponse

from avatar_api.views_frontend import spa_index


def root_health(_request):
    return JsonResponse({"status": "ok"})


urlpatterns = [
    path("healthz", root_health, name="root_health"),
    path("admin/", admin.site.urls),
    path("api/", include("avatar_api.urls")),
    # Todo lo que no sea API cae en el index.html del SPA (rutas de React)
    re_path(r"^(?!api/|admin/|static/).*$", spa_index, name="spa_index"),
]
