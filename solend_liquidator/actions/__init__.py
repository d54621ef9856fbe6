"""Action planning: support resolution and the five-bucket instruction plan."""
from .builder import ActionBuilder
from .plan import BUCKET_ORDER, ActionPlan, Bucket
from .support import ACTION_SUPPORT_REQUIREMENTS, Support

__all__ = [
    "ACTION_SUPPORT_REQUIREMENTS",
    "BUCKET_ORDER",
    "ActionBuilder",
    "ActionPlan",
    "Bucket",
    "Support",
]
