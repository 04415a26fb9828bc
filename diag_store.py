# diag_store.py
import asyncio

from cramodoro.core.auth import INDEX_PREFIX, USER_PREFIX
from cramodoro.core.config import get_settings
from cramodoro.core.session import SessionState, is_offline_token
from cramodoro.core.store import LocalStore
from cramodoro.services.decks_service import DECKS_KEY
from cramodoro.services.sync_service import LAST_SYNC_KEY, SYNC_QUEUE_KEY


async def _run():
    settings = get_settings()
    store = await LocalStore.open(settings.database_url)
    try:
        print("DB URL:", settings.database_url)
        keys = await store.get_all_keys()
        print("Keys:", ", ".join(keys) or "<none>")

        session = SessionState(store)
        token = await session.get_token()
        if token:
            mode = "offline" if is_offline_token(token) else "remote"
            print("Active user:", await session.current_email(), f"({mode})")
        else:
            print("Active user: <none>")

        accounts = [k for k in keys if k.startswith(USER_PREFIX)]
        index = [k for k in keys if k.startswith(INDEX_PREFIX)]
        print("cached accounts:", len(accounts), "index entries:", len(index))

        decks = await store.get_json(DECKS_KEY, [])
        print("decks in working set:", len(decks))
        for key in keys:
            if key.startswith("decks_"):
                print(f"  {key}: {len(await store.get_json(key, []))} decks")

        queue = await store.get_json(SYNC_QUEUE_KEY, [])
        print("queued sync entries:", len(queue))
        for item in queue[:5]:
            print("  ", item.get("type"), item.get("action"), item.get("deckId") or "-")
        print("last sync:", await store.get(LAST_SYNC_KEY) or "never")
    finally:
        await store.close()


def run():
    asyncio.run(_run())


if __name__ == "__main__":
    try:
        run()
    except Exception as e:
        print("ERROR:", repr(e))
