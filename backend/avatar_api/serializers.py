# avatar_api/serializers.py
from django.contrib.auth import password_validation
from django.contrib.auth.models import User
from rest_framework import serializers

from .models import Avatar, UserProfile
from .services.replicate_client import (
    ASPECT_RATIOS,
    OUTPUT_FORMATS,
    PARAM_LIMITS,
    PROMPT_MAX_LENGTH,
    PROMPT_MIN_LENGTH,
    GenerationParams,
)


# =========================================================
# Usuarios / auth
# =========================================================

def _profile(user):
    profile, _ = UserProfile.objects.get_or_create(user=user)
    return profile


def serialize_user(user):
    profile = _profile(user)
    return {
        'id': user.pk,
        'email': user.email,
        'name': user.first_name,
        'validated': profile.validated,
        'hfRepo': profile.hf_repo or None,
        'createdAt': user.date_joined,
    }


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField(max_length=254)
    password = serializers.CharField(min_length=6, max_length=128, write_only=True)
    name = serializers.CharField(min_length=1, max_length=150)

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(username=value).exists():
            raise serializers.ValidationError("User already exists with this email")
        return value

    def validate_password(self, value):
        password_validation.validate_password(value)
        return value

    def create(self, validated_data):
        user = User.objects.create_user(
            username=validated_data['email'],
            email=validated_data['email'],
            password=validated_data['password'],
            first_name=validated_data['name'],
        )
        UserProfile.objects.create(user=user)
        return user


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate_email(self, value):
        return value.strip().lower()


class ProfileUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=1, max_length=150, required=False)
    email = serializers.EmailField(max_length=254, required=False)
    hfRepo = serializers.RegexField(
        r'^[\w.-]+/[\w.-]+$',
        max_length=255,
        required=False,
        allow_blank=True,
        allow_null=True,
        error_messages={'invalid': 'hfRepo must have the format "username/repo-name"'},
    )
    currentPassword = serializers.CharField(required=False, write_only=True)
    newPassword = serializers.CharField(min_length=6, max_length=128, required=False, write_only=True)

    def validate_email(self, value):
        value = value.strip().lower()
        user = self.context['user']
        if User.objects.filter(username=value).exclude(pk=user.pk).exists():
            raise serializers.ValidationError("Email is already in use")
        return value

    def validate(self, data):
        if 'newPassword' in data:
            user = self.context['user']
            if not user.check_password(data.get('currentPassword') or ''):
                raise serializers.ValidationError({'currentPassword': 'Current password is incorrect'})
            password_validation.validate_password(data['newPassword'], user)
        return data

    def save(self):
        user = self.context['user']
        data = self.validated_data
        profile = _profile(user)

        if 'name' in data:
            user.first_name = data['name']
        if 'email' in data:
            user.email = data['email']
            user.username = data['email']
            # El email cambió: hay que volver a validarlo
            profile.validated = False
        if 'newPassword' in data:
            user.set_password(data['newPassword'])
        if 'hfRepo' in data:
            profile.hf_repo = data['hfRepo'] or ''

        user.save()
        profile.save()
        return user


# =========================================================
# Avatares
# =========================================================

class AvatarSerializer(serializers.ModelSerializer):
    fullName = serializers.CharField(source='full_name', min_length=2, max_length=255)
    replicateModelUrl = serializers.CharField(source='replicate_model_url', max_length=500)
    triggerWord = serializers.CharField(source='trigger_word', min_length=1, max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    visible = serializers.BooleanField(required=False, default=True)
    id = serializers.CharField(read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Avatar
        fields = [
            'id', 'fullName', 'replicateModelUrl', 'triggerWord',
            'description', 'visible', 'createdAt', 'updatedAt',
        ]
        # La unicidad la comprobamos a mano para devolver el mensaje de siempre
        validators = []

    def validate_replicateModelUrl(self, value):
        value = value.strip()
        qs = Avatar.objects.filter(replicate_model_url=value)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("This Replicate model URL is already in use")
        return value


def serialize_avatar_brief(avatar):
    if avatar is None:
        return None
    return {
        'id': str(avatar.pk),
        'fullName': avatar.full_name,
        'replicateModelUrl': avatar.replicate_model_url,
        'triggerWord': avatar.trigger_word,
    }


# =========================================================
# Imágenes
# =========================================================

class GenerateImageSerializer(serializers.Serializer):
    prompt = serializers.CharField(min_length=PROMPT_MIN_LENGTH, max_length=PROMPT_MAX_LENGTH, trim_whitespace=True)
    avatarId = serializers.IntegerField(min_value=1)
    lora_scale = serializers.FloatField(
        min_value=PARAM_LIMITS['lora_scale'][0], max_value=PARAM_LIMITS['lora_scale'][1], default=0.8
    )
    num_outputs = serializers.IntegerField(
        min_value=PARAM_LIMITS['num_outputs'][0], max_value=PARAM_LIMITS['num_outputs'][1], default=1
    )
    aspect_ratio = serializers.ChoiceField(choices=ASPECT_RATIOS, default='1:1')
    output_format = serializers.ChoiceField(choices=OUTPUT_FORMATS, default='webp')
    guidance_scale = serializers.FloatField(
        min_value=PARAM_LIMITS['guidance_scale'][0], max_value=PARAM_LIMITS['guidance_scale'][1], default=3.5
    )
    num_inference_steps = serializers.IntegerField(
        min_value=PARAM_LIMITS['num_inference_steps'][0],
        max_value=PARAM_LIMITS['num_inference_steps'][1],
        default=28,
    )
    seed = serializers.IntegerField(required=False, allow_null=True)
    go_fast = serializers.BooleanField(default=True)

    def to_params(self) -> GenerationParams:
        data = self.validated_data
        return GenerationParams(
            lora_scale=data['lora_scale'],
            num_outputs=data['num_outputs'],
            aspect_ratio=data['aspect_ratio'],
            output_format=data['output_format'],
            guidance_scale=data['guidance_scale'],
            num_inference_steps=data['num_inference_steps'],
            seed=data.get('seed'),
            go_fast=data['go_fast'],
        )


class PaginationSerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


def serialize_image(image, include_avatar=True):
    data = {
        'id': str(image.pk),
        'avatarId': str(image.avatar_id),
        'prompt': image.prompt,
        'imageUrl': image.image_url,
        'isPendingReview': image.is_pending_review,
        'isDurable': image.is_durable,
        'status': image.status,
        'createdAt': image.created_at,
    }
    if include_avatar:
        data['avatar'] = serialize_avatar_brief(image.avatar)
    return data

