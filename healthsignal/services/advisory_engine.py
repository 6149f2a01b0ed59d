"""
Rule-based advisory engine.

Key architectural decisions:
- Fixed, ordered rule families: hydration, sleep, activity, BMI, nutrition, balance
- Independent rules: a family only reads the snapshot, never another family's output
- Exactly one advisory per built-in family, including "log your data" messages
  when a family's inputs are missing
- Failure isolation: a crashing family is logged and replaced by one generic
  fallback advisory instead of blanking the whole result
- Stable priority sort (high, medium, low) so ties keep family order, then
  truncation to the configured maximum
"""

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

import structlog

from healthsignal.config import AdvisoryConfig
from healthsignal.domain.models import Advisory, BmiCategory, HealthSnapshot, Priority, bmi_category

logger = structlog.get_logger(__name__)

NUTRITION_WIDE_GAP_KCAL = 500
NUTRITION_CLOSE_GAP_KCAL = 200
BALANCE_LOW_RATIO = 0.1
BALANCE_HIGH_RATIO = 0.3


class RuleFamily(str, Enum):
    HYDRATION = "hydration"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    BMI = "bmi"
    NUTRITION = "nutrition"
    BALANCE = "balance"


Rule = Callable[[HealthSnapshot, AdvisoryConfig], Advisory | None]


@dataclass(frozen=True)
class AdvisoryRule:
    """A rule function bound to the family it speaks for."""

    family: str
    evaluate: Rule


FALLBACK_ADVISORY = Advisory(
    id="engine-fallback",
    text="Some recommendations could not be generated right now. Please try again later.",
    icon="alert-circle",
    priority=Priority.MEDIUM,
)


def hydration_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    # Reaching the target exactly counts as met.
    if snapshot.hydration_actual_l < snapshot.hydration_target_l:
        deficit_ml = (snapshot.hydration_target_l - snapshot.hydration_actual_l) * 1000
        glasses = math.ceil(deficit_ml / config.glass_volume_ml)
        noun = "glass" if glasses == 1 else "glasses"
        return Advisory(
            id="water-1",
            text=(
                f"You're behind on water intake today. Try drinking {glasses} more "
                f"{noun} to stay hydrated!"
            ),
            icon="water",
            priority=Priority.HIGH,
        )
    return Advisory(
        id="water-2",
        text="Awesome! You're meeting your daily water goal. Keep it up!",
        icon="checkmark-circle",
        priority=Priority.LOW,
    )


def sleep_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    hours = snapshot.sleep_hours
    if hours is None:
        return Advisory(
            id="sleep-5",
            text="Track your sleep to get personalized recommendations for better recovery!",
            icon="moon",
            priority=Priority.MEDIUM,
        )
    if hours < 6:
        return Advisory(
            id="sleep-1",
            text=(
                "Sleep duration looks low. Aim for at least 7 hours tonight for better "
                "recovery and energy tomorrow!"
            ),
            icon="moon",
            priority=Priority.HIGH,
        )
    if hours < 7:
        return Advisory(
            id="sleep-2",
            text="You're close! Try to get 7-8 hours of sleep tonight for optimal recovery.",
            icon="moon",
            priority=Priority.MEDIUM,
        )
    if hours <= 9:
        return Advisory(
            id="sleep-3",
            text="Perfect! Your sleep duration is in the ideal range. Keep it up!",
            icon="checkmark-circle",
            priority=Priority.LOW,
        )
    return Advisory(
        id="sleep-4",
        text="You're getting plenty of rest! A morning workout could boost your energy even more.",
        icon="sunny",
        priority=Priority.LOW,
    )


def activity_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    goal = config.daily_calorie_goal_kcal
    if snapshot.burned_calories < goal * 0.5:
        return Advisory(
            id="workout-1",
            text="A short workout today can boost your energy levels and help you reach your goals!",
            icon="fitness",
            priority=Priority.HIGH,
        )
    if snapshot.burned_calories < goal:
        return Advisory(
            id="workout-2",
            text="Great job on activity! A light stretch session or short walk is recommended.",
            icon="fitness",
            priority=Priority.MEDIUM,
        )
    return Advisory(
        id="workout-3",
        text="Excellent! You've exceeded your daily calorie burn goal. Keep up the amazing work!",
        icon="flame",
        priority=Priority.LOW,
    )


def bmi_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    if snapshot.bmi is None:
        return Advisory(
            id="bmi-5",
            text="Add your height and weight to get personalized BMI-based recommendations!",
            icon="body",
            priority=Priority.MEDIUM,
        )
    category = bmi_category(snapshot.bmi)
    if category is BmiCategory.UNDERWEIGHT:
        return Advisory(
            id="bmi-1",
            text=(
                "Your BMI suggests focusing on strength training and balanced nutrition "
                "for optimal health."
            ),
            icon="barbell",
            priority=Priority.MEDIUM,
        )
    if category is BmiCategory.NORMAL:
        return Advisory(
            id="bmi-2",
            text="Your BMI is in the healthy range! Keep maintaining your current fitness routine.",
            icon="checkmark-circle",
            priority=Priority.LOW,
        )
    if category is BmiCategory.OVERWEIGHT:
        return Advisory(
            id="bmi-3",
            text="Consider light cardio and mindful calorie control to maintain a healthy weight.",
            icon="walk",
            priority=Priority.HIGH,
        )
    return Advisory(
        id="bmi-4",
        text=(
            "Focus on regular cardio, strength training, and balanced nutrition for "
            "optimal health."
        ),
        icon="fitness",
        priority=Priority.HIGH,
    )


def nutrition_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    intake = snapshot.nutrition_total_kcal
    if intake is None:
        return Advisory(
            id="nutrition-4",
            text="Track your daily nutrition to get personalized meal recommendations!",
            icon="restaurant",
            priority=Priority.MEDIUM,
        )
    gap = abs(intake - config.ideal_intake_kcal)
    if gap > NUTRITION_WIDE_GAP_KCAL:
        if intake < config.ideal_intake_kcal:
            return Advisory(
                id="nutrition-1",
                text=(
                    "Your calorie intake is a bit low. Make sure you're eating enough to "
                    "fuel your workouts!"
                ),
                icon="restaurant",
                priority=Priority.MEDIUM,
            )
        return Advisory(
            id="nutrition-2",
            text="Consider portion control and nutrient-dense foods to balance your calorie intake.",
            icon="restaurant",
            priority=Priority.MEDIUM,
        )
    if gap <= NUTRITION_CLOSE_GAP_KCAL:
        return Advisory(
            id="nutrition-3",
            text="Perfect! Your nutrition is well-balanced. Keep up the great eating habits!",
            icon="checkmark-circle",
            priority=Priority.LOW,
        )
    return Advisory(
        id="nutrition-5",
        text="Your calorie intake is close to your target. Small adjustments will get you there.",
        icon="restaurant",
        priority=Priority.LOW,
    )


def balance_rule(snapshot: HealthSnapshot, config: AdvisoryConfig) -> Advisory:
    intake = snapshot.nutrition_total_kcal
    if snapshot.burned_calories <= 0 or intake is None or intake <= 0:
        return Advisory(
            id="balance-4",
            text="Log both your workouts and your meals to see your daily calorie balance.",
            icon="stats-chart",
            priority=Priority.MEDIUM,
        )
    ratio = snapshot.burned_calories / intake
    if ratio < BALANCE_LOW_RATIO:
        return Advisory(
            id="balance-1",
            text="Increase your daily activity to create a better calorie balance.",
            icon="trending-up",
            priority=Priority.MEDIUM,
        )
    if ratio > BALANCE_HIGH_RATIO:
        return Advisory(
            id="balance-2",
            text="You're very active! Make sure to fuel your body with adequate nutrition.",
            icon="restaurant",
            priority=Priority.MEDIUM,
        )
    return Advisory(
        id="balance-3",
        text="Your activity and nutrition are well balanced today. Nice work!",
        icon="checkmark-circle",
        priority=Priority.LOW,
    )


DEFAULT_RULES: tuple[AdvisoryRule, ...] = (
    AdvisoryRule(RuleFamily.HYDRATION.value, hydration_rule),
    AdvisoryRule(RuleFamily.SLEEP.value, sleep_rule),
    AdvisoryRule(RuleFamily.ACTIVITY.value, activity_rule),
    AdvisoryRule(RuleFamily.BMI.value, bmi_rule),
    AdvisoryRule(RuleFamily.NUTRITION.value, nutrition_rule),
    AdvisoryRule(RuleFamily.BALANCE.value, balance_rule),
)


class AdvisoryEngine:
    """
    Turns a snapshot into a ranked, bounded list of advisories.

    Design principles:
    - Deterministic: same snapshot and rules, same output
    - Graceful degradation: a family failure costs one slot, not the whole list
    - Observable: every failure is logged with its family
    """

    def __init__(
        self,
        config: AdvisoryConfig | None = None,
        rules: Sequence[AdvisoryRule] = DEFAULT_RULES,
    ) -> None:
        self.config = config or AdvisoryConfig()
        self.rules = tuple(rules)
        self.logger = logger.bind(component="advisory_engine")

    def evaluate(self, snapshot: HealthSnapshot) -> list[Advisory]:
        """Run every family in order, then sort by priority and truncate."""
        by_family: dict[str, Advisory] = {}
        failed_families: list[str] = []
        evaluated: set[str] = set()

        for rule in self.rules:
            # A family gets one attempt, whatever its first rule produced.
            if rule.family in evaluated:
                self.logger.warning("duplicate_rule_family_skipped", family=rule.family)
                continue
            evaluated.add(rule.family)
            try:
                advisory = rule.evaluate(snapshot, self.config)
                if advisory is not None and not isinstance(advisory, Advisory):
                    raise TypeError(f"rule returned {type(advisory).__name__}, not Advisory")
            except Exception as e:
                # Log error but keep evaluating the remaining families
                self.logger.exception("rule_family_failed", family=rule.family, error=str(e))
                failed_families.append(rule.family)
                continue

            if advisory is None:
                self.logger.info("rule_family_silent", family=rule.family)
                continue
            by_family[rule.family] = advisory

        advisories = list(by_family.values())
        if failed_families:
            advisories.append(FALLBACK_ADVISORY)

        # sorted() is stable: equal priorities keep family evaluation order
        ranked = sorted(advisories, key=lambda advisory: advisory.priority.rank)
        result = ranked[: self.config.max_advisories]

        self.logger.info(
            "advisories_evaluated",
            produced=len(advisories),
            returned=len(result),
            failed_families=failed_families,
        )
        return result


def evaluate(snapshot: HealthSnapshot, config: AdvisoryConfig | None = None) -> list[Advisory]:
    """Evaluate the default rule families against `snapshot`."""
    return AdvisoryEngine(config).evaluate(snapshot)
