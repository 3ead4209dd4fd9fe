import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from flf_coach.core.context_builder import format_number, round_half_up
from flf_coach.core.foods import AmountUnit, calories_for_grams, entry_label, grams_from_amount, protein_for_grams, search_catalog
from flf_coach.core.security import mask_api_key
from flf_coach.db import session as db_session
from flf_coach.services import app_state
from flf_coach.services.chat_client import ChatBusyError, SupportChatService
from flf_coach.services.food_log_service import SuggestionNotFoundError, apply_suggestion, suggestions_for_message


def open_store(db_path: Optional[str]) -> Session:
    if db_path:
        db_session.configure_database(str(Path(db_path).expanduser()))
    db_session.create_tables()
    return db_session.SessionLocal()


def print_turn_reply(message_id: str, text: str, items) -> None:
    print(text)
    for index, item, applied in items:
        marker = "x" if applied else " "
        print(f"  [{marker}] {index}: {item.display_name} - {format_number(item.calories)} cal, {format_number(item.protein)}g protein")
    if items:
        print(f"Apply with: flf-coach-chat apply {message_id} <index>")


def cmd_send(db: Session, args: argparse.Namespace) -> int:
    service = SupportChatService(db)
    try:
        if args.photo:
            turn = service.send_photo(Path(args.photo).expanduser().read_bytes(), " ".join(args.text))
        else:
            text = " ".join(args.text).strip()
            if not text:
                print("Nothing to send.")
                return 1
            turn = service.send(text)
    except ChatBusyError as exc:
        print(str(exc))
        return 1
    except (OSError, ValueError) as exc:
        print(f"Could not send photo: {exc}")
        return 1
    message_id = turn.assistant_message.message_id
    print_turn_reply(message_id, turn.parsed.text, suggestions_for_message(db, message_id))
    if turn.captured_challenge:
        print(f"Remembered challenge: {turn.captured_challenge}")
    return 0


def cmd_history(db: Session, args: argparse.Namespace) -> int:
    for message in app_state.recent_history(db, args.limit):
        print(f"{message.role} [{message.message_id}]: {message.content}")
    return 0


def cmd_suggestions(db: Session, args: argparse.Namespace) -> int:
    items = suggestions_for_message(db, args.message_id)
    if not items:
        print("No food-log suggestions on that message.")
        return 1
    for index, item, applied in items:
        state = "added" if applied else "pending"
        print(f"{index}: {item.display_name} - {format_number(item.calories)} cal ({state})")
    return 0


def cmd_apply(db: Session, args: argparse.Namespace) -> int:
    try:
        entry = apply_suggestion(db, args.message_id, args.index)
    except SuggestionNotFoundError as exc:
        print(str(exc))
        return 1
    if entry is None:
        print("Already added to your Food log.")
        return 0
    print(f"Added {entry.name} ({round_half_up(entry.calories)} cal) to {entry.date_key}.")
    return 0


def cmd_goal(db: Session, args: argparse.Namespace) -> int:
    if args.weight is not None:
        if args.weight <= 0:
            print("Goal weight must be greater than zero.")
            return 1
        app_state.set_goal_weight(db, args.weight)
    target = app_state.current_weekly_target(db)
    if not target:
        print("No goal set yet.")
        return 1
    print(f"Weekly calorie target: {format_number(target)} cal")
    return 0


def cmd_budget(db: Session, args: argparse.Namespace) -> int:
    day = datetime.strptime(args.date, app_state.DATE_KEY_FORMAT).date() if args.date else datetime.now().date()
    consumed = app_state.calories_consumed_this_week(db, day)
    remaining = app_state.calories_remaining_this_week(db, day)
    print(f"Consumed this week: {format_number(consumed)} cal")
    print(f"Remaining this week: {format_number(remaining)} cal")
    return 0


def cmd_food(db: Session, args: argparse.Namespace) -> int:
    matches = search_catalog(args.query, app_state.list_user_foods(db))
    if not matches:
        print("No matching foods.")
        return 1
    food = matches[0]
    unit = AmountUnit(args.unit)
    grams = grams_from_amount(food, args.amount, unit)
    if grams is None:
        print(f"{food.name} has no {unit.value} measure.")
        return 1
    entry = app_state.add_food_entry(
        db,
        app_state.today_key(),
        entry_label(food, args.amount, unit),
        calories_for_grams(food, grams),
        protein_for_grams(food, grams),
    )
    print(f"Added {entry.name} ({round_half_up(entry.calories)} cal).")
    return 0


def cmd_settings(db: Session, args: argparse.Namespace) -> int:
    if args.backend_url is not None:
        app_state.save_backend_url(db, args.backend_url)
    if args.api_key is not None:
        app_state.save_api_key(db, args.api_key)
    if args.context is not None:
        app_state.save_chatbot_context(db, args.context)
    api_key = app_state.resolve_api_key(db)
    print(f"Backend URL: {app_state.resolve_backend_url(db) or '(none)'}")
    print(f"API key: {mask_api_key(api_key) if api_key else '(none)'}")
    print(f"Custom instructions: {app_state.resolve_chatbot_context(db) or '(none)'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with the FLF support coach from a terminal.")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override the on-device SQLite store. Defaults to FLF_DB_PATH env or ~/.flf_coach/flf.db.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log request details.")
    sub = parser.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send", help="Send a message and print the reply.")
    send.add_argument("text", nargs="*", help="Message text.")
    send.add_argument("--photo", default=None, help="Attach a meal photo.")
    send.set_defaults(handler=cmd_send)

    history = sub.add_parser("history", help="Show recent chat messages.")
    history.add_argument("--limit", type=int, default=20)
    history.set_defaults(handler=cmd_history)

    suggestions = sub.add_parser("suggestions", help="List food-log suggestions on a reply.")
    suggestions.add_argument("message_id")
    suggestions.set_defaults(handler=cmd_suggestions)

    apply = sub.add_parser("apply", help="Add one suggestion to today's Food log.")
    apply.add_argument("message_id")
    apply.add_argument("index", type=int)
    apply.set_defaults(handler=cmd_apply)

    goal = sub.add_parser("goal", help="Show or set the goal weight (lbs).")
    goal.add_argument("weight", nargs="?", type=float, default=None)
    goal.set_defaults(handler=cmd_goal)

    budget = sub.add_parser("budget", help="Show this week's calorie budget.")
    budget.add_argument("--date", default=None, help="Any day in the week, yyyy-mm-dd.")
    budget.set_defaults(handler=cmd_budget)

    food = sub.add_parser("food", help="Add a catalog food to today's Food log.")
    food.add_argument("query")
    food.add_argument("amount", type=float)
    food.add_argument("--unit", choices=[u.value for u in AmountUnit], default=AmountUnit.grams.value)
    food.set_defaults(handler=cmd_food)

    settings = sub.add_parser("settings", help="Show or change client settings.")
    settings.add_argument("--backend-url", default=None)
    settings.add_argument("--api-key", default=None)
    settings.add_argument("--context", default=None, help="Custom instructions for the coach.")
    settings.set_defaults(handler=cmd_settings)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    db = open_store(args.db_path)
    try:
        return args.handler(db, args)
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
