from django.db import models
from django.contrib.auth.models import User


class UserProfile(models.Model):
    """Datos extra del usuario que no caben en auth.User"""
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile')
    validated = models.BooleanField(default=False, help_text="Email validado")
    hf_repo = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Repositorio HuggingFace con los pesos LoRA (formato: usuario/repo)"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'user_profiles'

    def __str__(self):
        return f"Profile for {self.user.username}"


class Contact(models.Model):
    """
    Contacto del CRM. Solo se usa como proxy de propiedad de los avatares:
    un avatar pertenece a un usuario a través de su contacto.
    """
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='contacts')
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'contacts'
        indexes = [
            models.Index(fields=['user'], name='contacts_user_id_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.user_id})"


class AvatarQuerySet(models.QuerySet):

    def accessible_to(self, user):
        """
        Avatares del usuario (vía contactos) más los que no tienen contacto.
        Los avatares sin contacto son visibles para cualquier usuario autenticado.
        """
        return self.filter(
            models.Q(contact__user=user) | models.Q(contact__isnull=True)
        )

    def visible(self):
        return self.filter(visible=True)


class Avatar(models.Model):
    contact = models.ForeignKey(
        Contact,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='avatars',
    )
    full_name = models.CharField(max_length=255)
    replicate_model_url = models.CharField(
        max_length=500,
        unique=True,
        help_text="Referencia al modelo/pesos LoRA en Replicate (única)"
    )
    trigger_word = models.CharField(max_length=100)
    description = models.TextField(blank=True, null=True)
    visible = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AvatarQuerySet.as_manager()

    class Meta:
        db_table = 'avatars'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['visible', 'created_at'], name='avatars_visible_created_idx'),
        ]

    def __str__(self):
        return f"{self.full_name} [{self.trigger_word}]"


class GeneratedImage(models.Model):
    """
    Imagen generada para un avatar.

    El ciclo de vida es explícito:
    - status='staged': pendiente de revisión (like / dislike / download).
      is_durable indica si image_url ya apunta al repositorio de GitHub o si es
      la URL efímera de Replicate (fallback cuando la subida falló).
    - status='published': aprobada. Nunca vuelve a 'staged'.
    - Descartada: la fila se borra.
    """
    STATUS_STAGED = 'staged'
    STATUS_PUBLISHED = 'published'
    STATUS_CHOICES = (
        (STATUS_STAGED, 'Staged'),
        (STATUS_PUBLISHED, 'Published'),
    )

    avatar = models.ForeignKey(Avatar, on_delete=models.CASCADE, related_name='images')
    prompt = models.TextField(help_text="Prompt enviado a Replicate (con trigger word)")
    image_url = models.URLField(max_length=1000)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_STAGED)
    is_durable = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'generated_images'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['avatar', 'status'], name='gen_images_avatar_status_idx'),
            models.Index(fields=['created_at'], name='gen_images_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(status__in=['staged', 'published']),
                name='generated_image_status_valid',
            ),
            models.CheckConstraint(
                condition=~models.Q(image_url=''),
                name='generated_image_url_not_empty',
            ),
        ]

    def __str__(self):
        return f"image[{self.pk}] avatar={self.avatar_id} {self.status}"

    @property
    def is_pending_review(self):
        return self.status == self.STATUS_STAGED
