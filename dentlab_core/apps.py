# dentlab_core/apps.py

from django.apps import AppConfig


class DentlabCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "dentlab_core"
    verbose_name = "Dental lab cases"
