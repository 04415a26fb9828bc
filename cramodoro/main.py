"""Command-line entry point for the Cramodoro client."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Sequence

from .app import AppContext, open_app
from .core.config import get_settings
from .core.errors import AuthError, CramodoroError
from .core.session import is_offline_token

Handler = Callable[[AppContext, argparse.Namespace], Awaitable[int]]


def _password(args: argparse.Namespace, prompt: str = "Password: ") -> str:
    return args.password if args.password is not None else getpass.getpass(prompt)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _token(app: AppContext) -> str:
    token = await app.session.get_token()
    if not token:
        raise AuthError("Not logged in - run `cramodoro login` first")
    return token


# ---------- commands ----------


async def cmd_signup(app: AppContext, args: argparse.Namespace) -> int:
    password = _password(args)
    confirm = args.password if args.password is not None else getpass.getpass("Confirm password: ")
    result = await app.auth.signup(args.email, password, confirm)
    print(f"Signed up as {result.user.get('email')} ({result.mode})")
    return 0


async def cmd_login(app: AppContext, args: argparse.Namespace) -> int:
    result = await app.auth.login(args.identifier, _password(args))
    decks = await app.decks.current_decks()
    print(f"Logged in as {result.user.get('email')} ({result.mode}), {len(decks)} decks")
    return 0


async def cmd_logout(app: AppContext, args: argparse.Namespace) -> int:
    await app.auth.logout()
    print("Logged out")
    return 0


async def cmd_whoami(app: AppContext, args: argparse.Namespace) -> int:
    token = await _token(app)
    user = await app.session.get_user() or {}
    mode = "offline" if is_offline_token(token) else "remote"
    print(f"{user.get('email')} ({mode})")
    return 0


async def cmd_profile(app: AppContext, args: argparse.Namespace) -> int:
    updates: Dict[str, Any] = {
        "name": args.name,
        "bio": args.bio,
        "fontSize": args.font_size,
        "profilePicture": args.picture,
        "username": args.username,
        "email": args.email,
    }
    updates = {key: value for key, value in updates.items() if value is not None}
    if updates:
        _print_json(await app.auth.update_profile(updates))
    else:
        _print_json(await app.auth.get_profile())
    return 0


async def cmd_sync(app: AppContext, args: argparse.Namespace) -> int:
    result = await app.sync.drain(await _token(app))
    print(f"Sync complete: {result.success} success, {result.failed} failed")
    return 0 if result.failed == 0 else 1


async def cmd_status(app: AppContext, args: argparse.Namespace) -> int:
    pending = await app.sync.pending()
    last = await app.sync.last_sync_time()
    network = await app.monitor.fetch()
    available = await app.prober.check_health()
    print(f"Network connected: {network.is_connected}")
    print(f"Backend available: {available} (urls: {', '.join(app.prober.ordered_urls())})")
    print(f"Pending sync entries: {len(pending)}")
    for entry in pending:
        print(f"  - {entry.type}/{entry.action} deckId={entry.deck_id or '-'}")
    print("Last sync: " + (datetime.fromtimestamp(last / 1000).isoformat() if last else "never"))
    return 0


async def cmd_watch(app: AppContext, args: argparse.Namespace) -> int:
    restored = await app.auth.restore_session()
    if restored is None:
        raise AuthError("Not logged in - run `cramodoro login` first")
    if restored.mode != "remote":
        print("Offline session: nothing to sync until you log in online")
        return 0
    print(f"Auto-sync running for {restored.user.get('email')}; Ctrl-C to stop")
    await asyncio.Event().wait()
    return 0


async def cmd_decks(app: AppContext, args: argparse.Namespace) -> int:
    if args.decks_command == "create":
        deck = await app.deck_service.create_deck(args.name, args.pomodoro, args.rest)
        print(f"Created deck {deck['id']}")
    elif args.decks_command == "delete":
        await app.deck_service.delete_deck(args.deck_id)
        print(f"Deleted deck {args.deck_id}")
    else:
        for deck in await app.deck_service.list_decks():
            print(f"{deck['id']}  {deck['name']}  ({len(deck.get('cards', []))} cards)")
    return 0


async def cmd_cards(app: AppContext, args: argparse.Namespace) -> int:
    await app.deck_service.add_card(args.deck_id, args.question, args.answer)
    print(f"Added card to deck {args.deck_id}")
    return 0


async def cmd_accounts(app: AppContext, args: argparse.Namespace) -> int:
    if args.accounts_command == "clear":
        print(f"Cleared {await app.vault.clear_all_cached_accounts()} cached accounts")
        return 0
    accounts = await app.vault.list_accounts()
    print(f"Found {len(accounts)} cached users")
    for account in accounts:
        print(f"  {account.email}  username={account.username}  created={account.created_at}")
    return 0


async def cmd_cache_account(app: AppContext, args: argparse.Namespace) -> int:
    user = await app.auth.cache_account_for_offline(args.identifier, _password(args))
    print(f"Account {user.email} is now available offline")
    return 0


COMMANDS: Dict[str, Handler] = {
    "signup": cmd_signup,
    "login": cmd_login,
    "logout": cmd_logout,
    "whoami": cmd_whoami,
    "profile": cmd_profile,
    "sync": cmd_sync,
    "status": cmd_status,
    "watch": cmd_watch,
    "decks": cmd_decks,
    "cards": cmd_cards,
    "accounts": cmd_accounts,
    "cache-account": cmd_cache_account,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cramodoro",
        description="Offline-first Cramodoro client: accounts, decks and background sync.",
    )
    parser.add_argument(
        "--diag-store",
        action="store_true",
        help="Run the local store diagnostics helper and exit.",
    )
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("signup", help="Create an account (remote when reachable, else offline).")
    p.add_argument("email")
    p.add_argument("--password")

    p = sub.add_parser("login", help="Log in with a username or email.")
    p.add_argument("identifier")
    p.add_argument("--password")

    sub.add_parser("logout", help="End the current session.")
    sub.add_parser("whoami", help="Show the logged-in account.")

    p = sub.add_parser("profile", help="Show the profile, or update it with the flags below.")
    p.add_argument("--name")
    p.add_argument("--bio")
    p.add_argument("--font-size", type=int)
    p.add_argument("--picture")
    p.add_argument("--username")
    p.add_argument("--email")

    sub.add_parser("sync", help="Replay queued changes against the backend now.")
    sub.add_parser("status", help="Show connectivity and the sync queue.")
    sub.add_parser("watch", help="Resume the session and keep auto-sync running.")

    p = sub.add_parser("decks", help="List, create or delete decks.")
    decks_sub = p.add_subparsers(dest="decks_command")
    decks_sub.add_parser("list")
    create = decks_sub.add_parser("create")
    create.add_argument("name")
    create.add_argument("--pomodoro", type=int, default=25)
    create.add_argument("--rest", type=int, default=5)
    delete = decks_sub.add_parser("delete")
    delete.add_argument("deck_id")

    p = sub.add_parser("cards", help="Add a card to a deck.")
    cards_sub = p.add_subparsers(dest="cards_command", required=True)
    add = cards_sub.add_parser("add")
    add.add_argument("deck_id")
    add.add_argument("question")
    add.add_argument("answer")

    p = sub.add_parser("accounts", help="Inspect or wipe cached offline accounts.")
    accounts_sub = p.add_subparsers(dest="accounts_command")
    accounts_sub.add_parser("list")
    accounts_sub.add_parser("clear")

    p = sub.add_parser("cache-account", help="Log in remotely and cache the account for offline use.")
    p.add_argument("identifier")
    p.add_argument("--password")

    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    app = await open_app()
    try:
        return await COMMANDS[args.command](app, args)
    finally:
        await app.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Parse CLI arguments and dispatch to the requested workflow."""

    parser = build_parser()
    args = parser.parse_args(None if argv is None else list(argv))

    settings = get_settings()
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if args.diag_store:
        from diag_store import run as run_store_diagnostics

        run_store_diagnostics()
        return 0

    if not args.command:
        parser.print_help()
        return 0

    try:
        return asyncio.run(_dispatch(args))
    except CramodoroError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
