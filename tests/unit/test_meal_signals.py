from flf_coach.core.meal_signals import LoggingSignals, detect_logging_signals, looks_like_meal_breakdown, needs_food_log_block


def test_user_log_request_triggers_block() -> None:
    signals = detect_logging_signals("Sounds tasty!", "Can you log my lunch?")
    assert signals.user_asked_to_log is True
    assert needs_food_log_block("Sounds tasty!", "Can you log my lunch?") is True


def test_reply_mentioning_logging_triggers_block() -> None:
    assert detect_logging_signals("You can add to your log later.", "I ate salad").reply_mentions_logging is True


def test_meal_breakdown_shapes() -> None:
    assert looks_like_meal_breakdown("**Kale (2 cups)**: 50-70 calories")
    assert looks_like_meal_breakdown("- Oats (1 cup): 300 calories")
    assert not looks_like_meal_breakdown("That was about 300 calories.")
    assert not looks_like_meal_breakdown("**Kale**: great choice")


def test_plain_chat_needs_no_block() -> None:
    assert needs_food_log_block("Keep going, you are doing well.", "I feel good today") is False


def test_existing_block_is_never_duplicated() -> None:
    reply = 'Logged.\n[food_log]\n{"items":[{"name":"Egg","calories":70}]}\n[/food_log]'
    assert needs_food_log_block(reply, "please log this") is False


def test_block_without_usable_items_counts_as_missing() -> None:
    assert needs_food_log_block('Logged.\n[FOOD_LOG]\n{"items":[]}\n[/FOOD_LOG]', "please log this") is True
    assert needs_food_log_block("Logged.\n[FOOD_LOG]\n{not json}\n[/FOOD_LOG]", "please log this") is True


def test_classifier_is_pluggable() -> None:
    always = lambda reply, user: LoggingSignals(reply_mentions_logging=True)
    never = lambda reply, user: LoggingSignals()
    assert needs_food_log_block("hello", "hi", always) is True
    assert needs_food_log_block("**Kale (2 cups)**: 60 calories", "log it", never) is False
