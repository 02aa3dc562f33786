"""
Command line entry point: one-shot commands, an interactive REPL and the
polling server.

    python bot_runner.py reply_to <status_id>      # dry run, prints the reply
    python bot_runner.py history <acct>
    python bot_runner.py reconcile <status_id>
    python bot_runner.py thread <thread_id>
    python bot_runner.py set_last_notification_id <id>
    python bot_runner.py process                   # one polling cycle
    python bot_runner.py --server
    python bot_runner.py --repl
"""

import asyncio
import json
import shlex
import signal
import sys
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from bot_state import BotState, load_state, save_state
from config import BotConfig, load_config
from database import init_db, make_engine
from history_service import build_thread_history, restore_thread
from llm_service import ChatService
from mastodon_client import MastodonClient
from reply_pipeline import ReplyPipeline
from retry import with_retry
from thread_resolver import ThreadResolver

USAGE = __doc__


def _dump(data) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


class BotApp:
    """Wires config, database session and API clients for the commands."""

    def __init__(
        self,
        config: BotConfig,
        db: Session,
        mastodon: MastodonClient,
        chat_service: ChatService,
    ):
        self.config = config
        self.db = db
        self.mastodon = mastodon
        self.chat_service = chat_service
        self._account_id: Optional[str] = None

    @classmethod
    def from_config(cls, config: BotConfig) -> "BotApp":
        engine = make_engine(config.database_url)
        init_db(engine)
        db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        mastodon = MastodonClient(
            config.mastodon_base_url,
            config.mastodon_access_token,
            timeout=config.network_timeout_sec,
        )
        return cls(config, db, mastodon, ChatService.from_config(config))

    async def account_id(self) -> str:
        if self._account_id is None:
            account = await with_retry(
                "verify-credentials",
                self.mastodon.verify_credentials,
                attempts=self.config.retry_attempts,
                backoff_sec=self.config.retry_backoff_sec,
            )
            self._account_id = account.id
            print(f"[cli] logged in as @{account.acct} (id={account.id})")
        return self._account_id

    async def pipeline(self, dry_run: bool = False) -> ReplyPipeline:
        return ReplyPipeline(
            self.db,
            self.mastodon,
            self.chat_service,
            self.config,
            await self.account_id(),
            dry_run=dry_run,
        )

    def close(self) -> None:
        self.db.close()


async def run_command(app: BotApp, args: List[str]) -> int:
    if not args:
        print(USAGE)
        return 2
    command, rest = args[0], args[1:]

    if command == "reply_to" and len(rest) == 1:
        pipeline = await app.pipeline(dry_run=True)
        result = await pipeline.reply_to_status_id(rest[0])
        print(_dump(result.model_dump(exclude_none=True)))
        return 0

    if command == "history" and len(rest) == 1:
        threads = build_thread_history(
            app.db,
            rest[0],
            max_threads=app.config.max_history_threads,
            max_recent_per_account=app.config.max_recent_per_account,
        )
        print(_dump([[m.to_api() for m in thread] for thread in threads]))
        return 0

    if command == "reconcile" and len(rest) == 1:
        resolver = ThreadResolver(
            app.db,
            app.mastodon,
            await app.account_id(),
            retry_attempts=app.config.retry_attempts,
            retry_backoff_sec=app.config.retry_backoff_sec,
        )
        thread_id = await resolver.reconcile_thread(rest[0])
        print(_dump({"thread_id": thread_id, "messages": [m.to_api() for m in restore_thread(app.db, thread_id)]}))
        return 0

    if command == "thread" and len(rest) == 1:
        messages = restore_thread(app.db, rest[0], include_pseudo=True)
        print(_dump([m.to_api() for m in messages]))
        return 0

    if command == "set_last_notification_id" and len(rest) == 1:
        save_state(BotState(last_notification_id=rest[0]), app.config.state_path)
        print(f"[cli] cursor set to {rest[0]}")
        return 0

    if command == "process" and not rest:
        pipeline = await app.pipeline()
        state = load_state(app.config.state_path)
        answered = await pipeline.process_notifications(state, app.config.state_path)
        print(f"[cli] answered {answered} notification(s); cursor={state.last_notification_id}")
        return 0

    print(f"[cli] unknown command: {' '.join(args)}")
    print(USAGE)
    return 2


async def run_server(app: BotApp, stop_event: asyncio.Event) -> None:
    """Poll for mentions every ``poll_interval_sec`` until ``stop_event`` is set."""
    pipeline = await app.pipeline()
    state = load_state(app.config.state_path)
    interval = app.config.poll_interval_sec
    print(f"[server] polling every {interval:.0f}s, cursor={state.last_notification_id}")

    while not stop_event.is_set():
        try:
            await pipeline.process_notifications(state, app.config.state_path, stop_event=stop_event)
        except Exception as exc:
            print(f"[server] polling cycle failed: {exc}")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    print("[server] stopped")


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt.
            pass


async def _serve(app: BotApp) -> None:
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)
    await run_server(app, stop_event)


async def run_repl(app: BotApp) -> None:
    print("[cli] REPL ready. Type a command (e.g. 'reply_to <id>'), or 'exit'.")
    while True:
        try:
            line = await asyncio.to_thread(input, "teobot> ")
        except EOFError:
            break
        args = shlex.split(line)
        if not args:
            continue
        if args[0] in ("exit", "quit"):
            break
        try:
            await run_command(app, args)
        except Exception as exc:
            print(f"[cli] {args[0]} failed: {exc}")


def main(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    app = BotApp.from_config(load_config())
    try:
        if "--server" in args:
            asyncio.run(_serve(app))
            return 0
        if "--repl" in args:
            asyncio.run(run_repl(app))
            return 0
        return asyncio.run(run_command(app, args))
    finally:
        app.close()


if __name__ == "__main__":
    raise SystemExit(main())
