"""Test suite for health profile prompt context."""

from mediai_chat.domain.models import HealthProfile
from mediai_chat.services.profile import build_profile_context


def test_missing_or_empty_profile_has_no_context():
    assert build_profile_context(None) is None
    assert build_profile_context(HealthProfile(user_id=1)) is None
    assert build_profile_context(HealthProfile(user_id=1, gender="", allergies=[])) is None


def test_populated_attributes_become_labelled_lines():
    profile = HealthProfile(
        user_id=1,
        age=67,
        weight=82.5,
        allergies=["penicillin", "latex"],
        medications=["warfarin"],
        heart_rate=58,
    )

    lines = build_profile_context(profile).splitlines()

    assert lines == [
        "Age: 67",
        "Weight: 82.5 kg",
        "Allergies: penicillin, latex",
        "Current medications: warfarin",
        "Resting heart rate: 58 bpm",
    ]


def test_zero_values_are_kept():
    context = build_profile_context(HealthProfile(user_id=1, stress_level=0))
    assert context == "Stress level (1-10): 0"
