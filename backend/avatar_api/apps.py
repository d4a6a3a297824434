from django.apps import AppConfig


class AvatarApiConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "avatar_api"
    verbose_name = "Avatar Studio API"
