# avatar_studio/wsgi.py
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "avatar_studio.settings")

from django.core.wsgi import get_wsgi_application
application = get_wsgi_application()
