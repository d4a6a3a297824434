from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from avatar_api.services.github_storage import GitHubImageStorage, StorageError


class Command(BaseCommand):
    help = "Comprueba la conexión con el repositorio de GitHub usado como almacenamiento de imágenes"

    def add_arguments(self, parser):
        parser.add_argument(
            "--avatar",
            help="Lista además la carpeta de este avatar",
        )

    def handle(self, *args, **options):
        try:
            storage = GitHubImageStorage.from_settings()
        except ImproperlyConfigured as e:
            raise CommandError(str(e))

        try:
            repo = storage.test_connection()
        except StorageError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f"OK {repo.get('full_name')} (branch {storage.branch}, private={repo.get('private')})"
        ))

        avatar = options.get("avatar")
        if avatar:
            folder = storage.avatar_folder(avatar)
            try:
                entries = storage.list_folder(folder)
            except StorageError as e:
                raise CommandError(str(e))
            self.stdout.write(f"{folder}: {len(entries)} fichero(s)")
            for entry in entries:
                self.stdout.write(f"  {entry.get('name')}")
