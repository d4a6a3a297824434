from django.urls import path

from .views_auth import health_check, login, me, register, update_profile
from .views_avatars import avatar_detail, avatars
from .views_images import dislike, download, generate, history, image_detail, like
from .views_users import stats

urlpatterns = [
    path("health/", health_check, name="health_check"),

    # Auth
    path("auth/register/", register, name="auth_register"),
    path("auth/login/", login, name="auth_login"),
    path("auth/me/", me, name="auth_me"),
    path("auth/profile/", update_profile, name="auth_profile"),

    # Avatares
    path("avatars/", avatars, name="avatars"),
    path("avatars/<int:avatar_id>/", avatar_detail, name="avatar_detail"),

    # Imágenes (generación + revisión)
    path("images/generate/", generate, name="images_generate"),
    path("images/history/", history, name="images_history"),
    path("images/<int:image_id>/", image_detail, name="image_detail"),
    path("images/<int:image_id>/like/", like, name="image_like"),
    path("images/<int:image_id>/dislike/", dislike, name="image_dislike"),
    path("images/<int:image_id>/download/", download, name="image_download"),

    # Usuarios
    path("users/stats/", stats, name="users_stats"),
]
