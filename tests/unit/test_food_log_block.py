from conftest import BROKEN_BLOCK_REPLY, FOLLOW_UP_BLOCK, MEAL_BREAKDOWN_REPLY, FakeLLMClient, FakeScenario
from flf_coach.core.food_log import FOOD_LOG_CALL_TO_ACTION, parse_food_log_reply
from flf_coach.core.prompts import FOOD_LOG_ONLY_INSTRUCTIONS
from flf_coach.services.food_log_block import ensure_food_log_block, food_log_follow_up_messages


def test_follow_up_messages_shape() -> None:
    messages = food_log_follow_up_messages("log my bowl", "Nice bowl!")
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[0]["content"] == FOOD_LOG_ONLY_INSTRUCTIONS
    assert messages[1]["content"] == "User said: log my bowl"


def test_follow_up_block_is_attached_with_call_to_action() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_BREAKDOWN)
    result = ensure_food_log_block(MEAL_BREAKDOWN_REPLY, "help me log this", llm)
    assert result.endswith(FOLLOW_UP_BLOCK)
    assert FOOD_LOG_CALL_TO_ACTION in result
    assert "I can't log" not in result
    assert llm.calls[0]["max_tokens"] == 400
    assert llm.calls[0]["timeout"] == 15


def test_failed_follow_up_falls_back_to_reply_parsing() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_FOLLOW_UP_FAILS)
    result = ensure_food_log_block(MEAL_BREAKDOWN_REPLY, "help me log this", llm)
    items = parse_food_log_reply(result).items
    assert [(i.name, i.calories, i.quantity) for i in items] == [("Kale", 60, "2 cups"), ("Wild rice", 100, "1/2 cup")]


def test_unusable_follow_up_and_no_meal_lines_leaves_reply_unchanged() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_FOLLOW_UP_GARBAGE)
    reply = "You can track it later if you like."
    assert ensure_food_log_block(reply, "log it", llm) == reply


def test_reply_that_needs_no_block_makes_no_follow_up() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_BREAKDOWN)
    assert ensure_food_log_block("Proud of you!", "I had a good day", llm) == "Proud of you!"
    assert llm.calls == []


def test_broken_block_in_reply_is_replaced_by_follow_up() -> None:
    llm = FakeLLMClient(FakeScenario.BROKEN_BLOCK)
    result = ensure_food_log_block(BROKEN_BLOCK_REPLY, "help me log this", llm)
    assert len(llm.calls) == 1
    assert llm.calls[0]["messages"][0]["content"] == FOOD_LOG_ONLY_INSTRUCTIONS
    assert "{not json}" not in llm.calls[0]["messages"][2]["content"]
    assert "{not json}" not in result
    assert result.count("[FOOD_LOG]") == 1
    assert result.endswith(FOLLOW_UP_BLOCK)
    assert [i.name for i in parse_food_log_reply(result).items] == ["Kale", "Wild rice"]


def test_broken_block_falls_back_to_reply_parsing_when_follow_up_fails() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_FOLLOW_UP_FAILS)
    result = ensure_food_log_block(BROKEN_BLOCK_REPLY, "help me log this", llm)
    assert "{not json}" not in result
    items = parse_food_log_reply(result).items
    assert [(i.name, i.calories, i.quantity) for i in items] == [("Kale", 60, "2 cups")]


def test_cut_off_block_is_dropped_when_nothing_replaces_it() -> None:
    llm = FakeLLMClient(FakeScenario.MEAL_FOLLOW_UP_GARBAGE)
    result = ensure_food_log_block('Great choice.\n[FOOD_LOG]\n{"items":[{"na', "thanks", llm)
    assert result == "Great choice."
