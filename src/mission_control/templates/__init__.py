"""Control template models and loader exports."""

from .loader import TemplateLoadError, TemplateLoader
from .models import BUILTIN_TEMPLATES, ControlTemplate

__all__ = [
    "BUILTIN_TEMPLATES",
    "ControlTemplate",
    "TemplateLoadError",
    "TemplateLoader",
]
