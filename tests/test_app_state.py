from datetime import date

import pytest

from flf_coach.services import app_state


def test_setting_goal_marks_onboarding_complete(db_session) -> None:
    assert app_state.has_completed_onboarding(db_session) is False
    app_state.set_goal_weight(db_session, 150)
    assert app_state.has_completed_onboarding(db_session) is True
    assert app_state.current_weekly_target(db_session) == 12600

    app_state.set_goal_weight(db_session, 140)
    assert app_state.current_weekly_target(db_session) == 11760


def test_negative_goal_is_rejected(db_session) -> None:
    with pytest.raises(ValueError):
        app_state.set_goal_weight(db_session, -5)


def test_challenges_are_deduplicated(db_session) -> None:
    assert app_state.add_challenge(db_session, "weekends") is True
    assert app_state.add_challenge(db_session, " weekends ") is False
    assert app_state.add_challenge(db_session, "   ") is False


def test_challenge_capture_strips_canned_prefix(db_session) -> None:
    text = "Remember this as something I find challenging: late-night snacking"
    assert app_state.capture_challenge(db_session, text) == "late-night snacking"
    assert app_state.capture_challenge(db_session, text) is None
    assert app_state.capture_challenge(db_session, "I had a hard day") is None


def test_challenge_capture_keeps_free_form_request(db_session) -> None:
    text = "Please REMEMBER that mornings are challenging for me"
    assert app_state.capture_challenge(db_session, text) == text


def test_chat_history_is_append_only_in_insertion_order(db_session) -> None:
    first = app_state.record_chat_message(db_session, "user", "hi")
    second = app_state.record_chat_message(db_session, "assistant", "hello")
    third = app_state.record_chat_message(db_session, "user", "again")
    assert [m.message_id for m in app_state.chat_history(db_session)] == [first.message_id, second.message_id, third.message_id]
    assert [m.content for m in app_state.recent_history(db_session, 2)] == ["hello", "again"]


def test_unknown_role_is_rejected(db_session) -> None:
    with pytest.raises(ValueError):
        app_state.record_chat_message(db_session, "system", "nope")


def test_food_entries_per_day_and_totals(db_session) -> None:
    entry = app_state.add_food_entry(db_session, "2026-10-14", "Kale (2 cups)", 60, 2)
    app_state.add_food_entry(db_session, "2026-10-14", "Rice", 100, 4)
    app_state.add_food_entry(db_session, "2026-10-15", "Toast", 80, 3)
    assert app_state.day_totals(db_session, "2026-10-14") == (160, 6)

    assert app_state.remove_food_entry(db_session, entry.id) is True
    assert [e.name for e in app_state.food_entries_for(db_session, "2026-10-14")] == ["Rice"]
    assert app_state.remove_food_entry(db_session, entry.id) is False


def test_week_runs_sunday_to_saturday() -> None:
    days = app_state.week_days(date(2026, 10, 14))
    assert days[0] == date(2026, 10, 11)
    assert days[-1] == date(2026, 10, 17)
    assert app_state.week_days(date(2026, 10, 11))[0] == date(2026, 10, 11)


def test_weekly_budget_uses_calendar_week(db_session) -> None:
    app_state.set_goal_weight(db_session, 100)
    app_state.upsert_daily_log(db_session, "2026-10-12", calories_consumed=2000)
    app_state.add_food_entry(db_session, "2026-10-13", "Pasta", 1500, 20)
    # Previous Saturday is outside the week.
    app_state.upsert_daily_log(db_session, "2026-10-10", calories_consumed=9999)

    day = date(2026, 10, 14)
    assert app_state.calories_consumed_this_week(db_session, day) == 3500
    assert app_state.calories_remaining_this_week(db_session, day) == 8400 - 3500


def test_remaining_budget_never_negative(db_session) -> None:
    app_state.set_goal_weight(db_session, 10)
    app_state.upsert_daily_log(db_session, "2026-10-14", calories_consumed=5000)
    assert app_state.calories_remaining_this_week(db_session, date(2026, 10, 14)) == 0


def test_daily_log_upsert_keeps_unspecified_fields(db_session) -> None:
    app_state.upsert_daily_log(db_session, "2026-10-14", calories_consumed=1800, step_count=9000)
    row = app_state.upsert_daily_log(db_session, "2026-10-14", weight_lbs=181.2, is_manual_override=True)
    assert row.calories_consumed == 1800
    assert row.step_count == 9000
    assert row.weight_lbs == 181.2
    assert row.is_manual_override is True


def test_user_set_settings_override_defaults(db_session, monkeypatch) -> None:
    monkeypatch.setattr(app_state, "DEFAULT_BACKEND_URL", "https://default.example.com")
    assert app_state.resolve_backend_url(db_session) == "https://default.example.com"
    app_state.save_backend_url(db_session, "https://mine.example.com ")
    assert app_state.resolve_backend_url(db_session) == "https://mine.example.com"
    app_state.save_backend_url(db_session, "   ")
    assert app_state.resolve_backend_url(db_session) == "https://default.example.com"


def test_api_key_is_sealed_at_rest(db_session) -> None:
    app_state.save_api_key(db_session, "sk-live-abcdefgh")
    stored = app_state.get_setting(db_session, app_state.SETTING_OPENAI_API_KEY)
    assert stored and "sk-live" not in stored
    assert app_state.resolve_api_key(db_session) == "sk-live-abcdefgh"


def test_blank_defaults_count_as_absent(db_session, monkeypatch) -> None:
    monkeypatch.setattr(app_state, "DEFAULT_CHATBOT_CONTEXT", "   ")
    assert app_state.resolve_chatbot_context(db_session) is None
    assert app_state.resolve_api_key(db_session) is None


def test_user_foods_are_searchable(db_session) -> None:
    food = app_state.save_user_food(db_session, "  Protein bar ", 380, 30, grams_per_serving=60)
    assert food.name == "Protein bar"
    assert [f.name for f in app_state.list_user_foods(db_session)] == ["Protein bar"]
