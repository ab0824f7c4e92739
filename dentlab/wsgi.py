"""
WSGI config for the dentlab project.
"""

import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'dentlab.settings')
application = get_wsgi_application()
