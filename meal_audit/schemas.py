# meal_audit/schemas.py
from typing import Annotated, List, Literal, Optional, get_args

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Language = Literal["en", "bn", "hi", "as"]
SUPPORTED_LANGUAGES: tuple[str, ...] = get_args(Language)
DEFAULT_LANGUAGE = "en"

ItemStatus = Literal["PASS", "WARNING", "FAIL"]


def _require_all_languages(value: dict[str, str]) -> dict[str, str]:
    missing = [lang for lang in SUPPORTED_LANGUAGES if lang not in value]
    if missing:
        raise ValueError(f"missing languages: {', '.join(missing)}")
    return value


LocalizedText = Annotated[dict[Language, str], AfterValidator(_require_all_languages)]

NO_FOOD_ADVICE: dict[str, str] = {
    "en": "No edible food was detected in this image. Please upload a clear photo of your meal.",
    "bn": "এই ছবিতে কোনো খাবার শনাক্ত করা যায়নি। অনুগ্রহ করে আপনার খাবারের একটি পরিষ্কার ছবি আপলোড করুন।",
    "hi": "इस तस्वीर में कोई खाद्य पदार्थ नहीं मिला। कृपया अपने भोजन की एक स्पष्ट तस्वीर अपलोड करें।",
    "as": "এই ছবিখনত কোনো খাদ্য চিনাক্ত কৰিব পৰা নগ'ল। অনুগ্ৰহ কৰি আপোনাৰ আহাৰৰ এখন স্পষ্ট ছবি আপলোড কৰক।",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class FoodItem(_CamelModel):
    name: LocalizedText
    portion: LocalizedText
    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fats: float = Field(ge=0)
    notes: LocalizedText
    status: ItemStatus


class AnalysisResult(_CamelModel):
    """Normalized nutrition analysis. Wire and cache shape use camelCase aliases."""

    items: List[FoodItem]
    total_calories: float = Field(ge=0)
    total_protein: float = Field(ge=0)
    total_carbs: float = Field(ge=0)
    total_fats: float = Field(ge=0)
    health_rating: float = Field(ge=0, le=10)
    advice: LocalizedText

    @model_validator(mode="after")
    def check_refusal_shape(self) -> "AnalysisResult":
        if self.items:
            return self
        totals = (
            self.total_calories,
            self.total_protein,
            self.total_carbs,
            self.total_fats,
            self.health_rating,
        )
        if any(totals) or dict(self.advice) != NO_FOOD_ADVICE:
            raise ValueError("result without items must be the standard no-food result")
        return self

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CacheEntry(BaseModel):
    timestamp: float
    data: AnalysisResult


ActivityLevel = Literal[
    "sedentary",
    "lightly_active",
    "moderately_active",
    "very_active",
    "extra_active",
]


class UserProfileInput(BaseModel):
    age: int = Field(gt=0, lt=130)
    gender: Literal["male", "female"]
    weight: float = Field(gt=0, description="Weight in kg")
    height: float = Field(gt=0, description="Height in cm")
    activity_level: ActivityLevel = "sedentary"


class UserProfile(UserProfileInput):
    tdee: int


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    request_id: Optional[str] = None
