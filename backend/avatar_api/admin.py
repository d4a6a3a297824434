# avatar_api/admin.py
from django.contrib import admin
from .models import Avatar, Contact, GeneratedImage, UserProfile


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "validated", "hf_repo", "created_at")
    search_fields = ("user__username", "user__email", "hf_repo")
    list_filter = ("validated",)
    readonly_fields = ("created_at", "updated_at")


@admin.register(Contact)
class ContactAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "user", "created_at")
    search_fields = ("name", "email", "user__username")
    readonly_fields = ("created_at",)


@admin.register(Avatar)
class AvatarAdmin(admin.ModelAdmin):
    list_display = ("id", "full_name", "trigger_word", "contact", "visible", "created_at")
    search_fields = ("full_name", "trigger_word", "replicate_model_url")
    list_filter = ("visible",)
    readonly_fields = ("created_at", "updated_at")


@admin.register(GeneratedImage)
class GeneratedImageAdmin(admin.ModelAdmin):
    list_display = ("id", "avatar", "status", "is_durable", "created_at")
    search_fields = ("prompt", "avatar__full_name", "image_url")
    list_filter = ("status", "is_durable", "created_at")
    readonly_fields = ("created_at",)
