"""Serialize a stored health profile into prompt context."""

from typing import List, Optional

from ..domain.models import HealthProfile

# (attribute, label, unit)
_FIELDS = [
    ("age", "Age", None),
    ("gender", "Gender", None),
    ("height", "Height", "m"),
    ("weight", "Weight", "kg"),
    ("bmi", "BMI", None),
    ("blood_type", "Blood type", None),
    ("allergies", "Allergies", None),
    ("chronic_conditions", "Chronic conditions", None),
    ("medications", "Current medications", None),
    ("family_history", "Family history", None),
    ("blood_pressure", "Blood pressure", None),
    ("heart_rate", "Resting heart rate", "bpm"),
    ("activity_level", "Activity level", None),
    ("diet_type", "Diet", None),
    ("hours_of_sleep", "Sleep", "hours per night"),
    ("stress_level", "Stress level (1-10)", None),
]


def build_profile_context(profile: Optional[HealthProfile]) -> Optional[str]:
    """One "Label: value" line per populated attribute, or None if there are none."""
    if profile is None:
        return None

    lines: List[str] = []
    for attribute, label, unit in _FIELDS:
        value = getattr(profile, attribute)
        if value is None or value == [] or value == "":
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        lines.append(f"{label}: {value} {unit}" if unit else f"{label}: {value}")

    return "\n".join(lines) if lines else None
