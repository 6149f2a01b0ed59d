"""Overall health score: four 0-25 sub-scores summed into 0-100."""

import math

import structlog

from healthsignal.config import AdvisoryConfig
from healthsignal.domain.models import BmiCategory, HealthScore, HealthSnapshot, bmi_category

logger = structlog.get_logger(__name__)

SUB_SCORE_MAX = 25.0

_BMI_POINTS = {
    BmiCategory.NORMAL: 25.0,
    BmiCategory.OVERWEIGHT: 18.0,
    BmiCategory.UNDERWEIGHT: 10.0,
    BmiCategory.OBESE: 10.0,
}


def _clamp(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(SUB_SCORE_MAX, value))


def water_score(snapshot: HealthSnapshot) -> float:
    if snapshot.hydration_actual_l <= 0:
        return 0.0
    return _clamp(snapshot.hydration_actual_l / snapshot.hydration_target_l * SUB_SCORE_MAX)


def nutrition_score(snapshot: HealthSnapshot, ideal_intake_kcal: float) -> float:
    intake = snapshot.nutrition_total_kcal
    if intake is None or intake <= 0:
        return 0.0
    return _clamp(SUB_SCORE_MAX - abs(intake - ideal_intake_kcal) / ideal_intake_kcal * SUB_SCORE_MAX)


def activity_score(snapshot: HealthSnapshot, goal_kcal: float) -> float:
    if snapshot.burned_calories <= 0:
        return 0.0
    return _clamp(snapshot.burned_calories / goal_kcal * SUB_SCORE_MAX)


def bmi_score(snapshot: HealthSnapshot) -> float:
    if snapshot.bmi is None:
        return 0.0
    return _BMI_POINTS[bmi_category(snapshot.bmi)]


def describe_score(score: int) -> str:
    if score >= 80:
        return (
            f"Based on your overview health tracking, your score is {score} and considered "
            "excellent. Keep up the great work!"
        )
    if score >= 60:
        return (
            f"Based on your overview health tracking, your score is {score} and considered "
            "good. You're on the right track!"
        )
    if score >= 40:
        return (
            f"Based on your overview health tracking, your score is {score} and considered "
            "fair. There's room for improvement."
        )
    return (
        f"Based on your overview health tracking, your score is {score}. "
        "Focus on improving your daily health habits."
    )


def compute_health_score(
    snapshot: HealthSnapshot, config: AdvisoryConfig | None = None
) -> HealthScore:
    """Score a snapshot against the same goals the advisory engine uses."""
    config = config or AdvisoryConfig()
    water = water_score(snapshot)
    nutrition = nutrition_score(snapshot, config.ideal_intake_kcal)
    activity = activity_score(snapshot, config.daily_calorie_goal_kcal)
    bmi = bmi_score(snapshot)

    score = max(0, min(100, round(water + nutrition + activity + bmi)))
    logger.debug("health_score_computed", score=score)
    return HealthScore(
        score=score,
        water=water,
        nutrition=nutrition,
        activity=activity,
        bmi=bmi,
        description=describe_score(score),
    )
