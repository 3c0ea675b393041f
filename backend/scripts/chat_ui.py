"""
Terminal chat against the query service, using the same controller and stores as the dashboard API.
Sessions are kept in memory only. Commands: /new starts a new chat, /quit exits.

  python scripts/chat_ui.py --db-url postgresql://... [--username u --password p]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from querychat.services.auth_service import TokenStore  # noqa: E402
from querychat.services.chat_history_service import ChatHistoryStore  # noqa: E402
from querychat.services.query_api.client import QueryApiClient  # noqa: E402
from querychat.services.query_session import QuerySessionController  # noqa: E402
from querychat.services.storage import MemoryKeyValueStore  # noqa: E402


async def run(args: argparse.Namespace) -> int:
    kv = MemoryKeyValueStore()
    client = QueryApiClient(token_store=TokenStore(kv))
    controller = QuerySessionController(ChatHistoryStore(kv), client)

    if args.username:
        result = await client.login(args.username, args.password or "")
        if "error" in result:
            print(f"Login failed: {result['error']}")
            return 1
        user = await client.get_current_user()
        controller.user_id = str(user.get("id")) if "error" not in user else None

    status = await controller.connect(args.db_url, args.gemini_api_key)
    print(f"Connect: {status.message or ('ok' if status.success else 'failed')} ({status.table_count} tables)")
    controller.new_chat()

    while True:
        try:
            text = input("\nyou> ").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if text == "/quit":
            break
        if text == "/new":
            controller.new_chat()
            print("(new chat)")
            continue
        message = await controller.submit_question(text)
        if controller.limit_reached and message is None:
            print("(message limit reached for this chat; type /new)")
            continue
        if message is None:
            continue
        print(f"\nassistant> {message.content}")
        if message.sql:
            print(f"\nSQL: {message.sql}")
        if message.results and message.results.rows:
            print("\t".join(message.results.columns))
            for row in message.results.rows[:10]:
                print("\t".join(str(row.get(c, "")) for c in message.results.columns))
    controller.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Chat with the query service from the terminal.")
    parser.add_argument("--db-url", required=True)
    parser.add_argument("--gemini-api-key")
    parser.add_argument("--username")
    parser.add_argument("--password")
    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
