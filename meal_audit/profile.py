# meal_audit/profile.py
"""Daily energy target for the user profile form (Mifflin-St Jeor)."""

from meal_audit.schemas import UserProfile, UserProfileInput

ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "lightly_active": 1.375,
    "moderately_active": 1.55,
    "very_active": 1.725,
    "extra_active": 1.9,
}


def basal_metabolic_rate(age: int, gender: str, weight: float, height: float) -> float:
    bmr = 10 * weight + 6.25 * height - 5 * age
    return bmr + 5 if gender == "male" else bmr - 161


def calculate_tdee(profile: UserProfileInput) -> int:
    bmr = basal_metabolic_rate(profile.age, profile.gender, profile.weight, profile.height)
    return round(bmr * ACTIVITY_MULTIPLIERS[profile.activity_level])


def build_profile(profile: UserProfileInput) -> UserProfile:
    return UserProfile(**profile.model_dump(), tdee=calculate_tdee(profile))
