# Core data model and scoring helpers. Modules that need the library
# snapshot (assembler, replacement, plan_edits...) are imported directly.
from .models import (
    DEFAULT_PATTERN,
    DEFAULT_SIZES,
    STYLES,
    Filler,
    Group,
    GroupPlan,
    Placeholder,
    PlanResult,
    Slot,
    Track,
    UsedSet,
)
from .continuity import continuity_cost, key_to_camelot, order_group_deterministically
from .roles import fits_role, infer_role_by_position, role_boost

__all__ = [
    "DEFAULT_PATTERN",
    "DEFAULT_SIZES",
    "STYLES",
    "Filler",
    "Group",
    "GroupPlan",
    "Placeholder",
    "PlanResult",
    "Slot",
    "Track",
    "UsedSet",
    "continuity_cost",
    "key_to_camelot",
    "order_group_deterministically",
    "fits_role",
    "infer_role_by_position",
    "role_boost",
]
