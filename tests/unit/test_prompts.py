from flf_coach.core.context_builder import UserContext
from flf_coach.core.prompts import (
    BASE_INSTRUCTIONS,
    COACH_FRAMEWORK,
    FOOD_LOG_DIRECTIVE,
    build_system_prompt,
    challenges_line,
    goal_summary_line,
)


def test_prompt_without_goal_or_challenges_has_only_static_sections() -> None:
    prompt = build_system_prompt(UserContext())
    assert prompt == f"{BASE_INSTRUCTIONS}\n\n{COACH_FRAMEWORK}"
    assert "goal weight:" not in prompt
    assert "finds challenging" not in prompt


def test_prompt_includes_goal_and_challenges_in_order() -> None:
    ctx = UserContext.for_goal(150, ["late-night snacking", "weekends"])
    prompt = build_system_prompt(ctx)
    goal = "User's goal weight: 150 lbs. Weekly calorie target: 12600 cal (this is their weekly food budget)."
    challenges = "Things the user finds challenging: late-night snacking; weekends."
    assert goal in prompt
    assert challenges in prompt
    assert prompt.index(COACH_FRAMEWORK) < prompt.index(goal) < prompt.index(challenges)


def test_backend_variant_leads_with_food_log_directive() -> None:
    prompt = build_system_prompt(UserContext(), food_log_directive=True)
    assert prompt.startswith(FOOD_LOG_DIRECTIVE)
    assert BASE_INSTRUCTIONS in prompt


def test_custom_instructions_are_last_and_blank_ones_skipped() -> None:
    prompt = build_system_prompt(UserContext.for_goal(120), custom_instructions="Be extra upbeat.")
    assert prompt.endswith("Additional instructions for how you should act:\nBe extra upbeat.")
    assert "Additional instructions" not in build_system_prompt(UserContext(), custom_instructions="   ")


def test_goal_line_rounds_target_and_keeps_fractional_goal() -> None:
    ctx = UserContext(goal_weight_lbs=150.5, weekly_calorie_target=12642.5)
    line = goal_summary_line(ctx)
    assert line is not None
    assert "150.5 lbs" in line
    assert "12643 cal" in line


def test_goal_line_absent_without_goal_or_target() -> None:
    assert goal_summary_line(UserContext()) is None


def test_challenges_line_absent_when_empty() -> None:
    assert challenges_line(UserContext()) is None


def test_prompt_text_keeps_its_dashes() -> None:
    assert COACH_FRAMEWORK.startswith("COACHING FRAMEWORK — Use these concepts")
    assert "understanding WHY they want to lose weight—e.g." in COACH_FRAMEWORK
    assert "two tbsp can add 150–200 cal" in COACH_FRAMEWORK
    assert 'You are NOT "logging" for them—you are providing the list' in FOOD_LOG_DIRECTIVE
    assert FOOD_LOG_DIRECTIVE.startswith("CRITICAL - Food logging:")
