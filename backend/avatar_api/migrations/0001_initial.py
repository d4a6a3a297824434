from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Contact',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('email', models.EmailField(blank=True, default='', max_length=254)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='contacts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'contacts',
                'indexes': [models.Index(fields=['user'], name='contacts_user_id_idx')],
            },
        ),
        migrations.CreateModel(
            name='Avatar',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('full_name', models.CharField(max_length=255)),
                ('replicate_model_url', models.CharField(help_text='Referencia al modelo/pesos LoRA en Replicate (única)', max_length=500, unique=True)),
                ('trigger_word', models.CharField(max_length=100)),
                ('description', models.TextField(blank=True, null=True)),
                ('visible', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('contact', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='avatars', to='avatar_api.contact')),
            ],
            options={
                'db_table': 'avatars',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['visible', 'created_at'], name='avatars_visible_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='GeneratedImage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('prompt', models.TextField(help_text='Prompt enviado a Replicate (con trigger word)')),
                ('image_url', models.URLField(max_length=1000)),
                ('status', models.CharField(choices=[('staged', 'Staged'), ('published', 'Published')], default='staged', max_length=10)),
                ('is_durable', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('avatar', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='images', to='avatar_api.avatar')),
            ],
            options={
                'db_table': 'generated_images',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['avatar', 'status'], name='gen_images_avatar_status_idx'),
                    models.Index(fields=['created_at'], name='gen_images_created_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('status__in', ['staged', 'published'])), name='generated_image_status_valid'),
                    models.CheckConstraint(condition=models.Q(('image_url', ''), _negated=True), name='generated_image_url_not_empty'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('validated', models.BooleanField(default=False, help_text='Email validado')),
                ('hf_repo', models.CharField(blank=True, default='', help_text='Repositorio HuggingFace con los pesos LoRA (formato: usuario/repo)', max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='profile', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_profiles',
            },
        ),
    ]
