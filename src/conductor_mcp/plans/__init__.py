"""Task plan models and loader exports."""

from .loader import PlanLoadError, PlanLoader, PlanSource
from .models import PlanDefinition, PlanTask, PlanToolCall

__all__ = [
    "PlanDefinition",
    "PlanLoadError",
    "PlanLoader",
    "PlanSource",
    "PlanTask",
    "PlanToolCall",
]
