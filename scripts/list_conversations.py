from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

# Ensure the package root is on sys.path when run from scripts/
_pkg_root = str(Path(__file__).resolve().parents[1])
if _pkg_root not in sys.path:
    sys.path.insert(0, _pkg_root)

from dialogue.config import SimulationConfig
from dialogue.exceptions import DialogueError
from dialogue.log import RunLogger
from dialogue.memory import EpisodicMemoryStore


def _short(text, n: int = 80) -> str:
    if not text:
        return "-"
    one_line = " ".join(text.split())
    return one_line if len(one_line) <= n else one_line[:n] + "..."


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="List past completed conversations between two personas")
    p.add_argument("--db", type=str, default=None, help="SQLite database path (env MEMORY_DB_PATH)")
    p.add_argument("--a", type=str, default="alice", help="First speaker id")
    p.add_argument("--b", type=str, default="bob", help="Second speaker id")
    p.add_argument("--limit", type=int, default=5)
    args = p.parse_args(argv)

    try:
        config = SimulationConfig.from_env(require_api_key=False, db_path=args.db)
    except DialogueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    run_log = RunLogger(config.log_level).start()

    if not Path(config.db_path).exists():
        logger.warning(f"No database at {config.db_path}")
        run_log.close()
        return 1

    store = None
    try:
        store = EpisodicMemoryStore(config.db_path)
        past = store.get_past_conversations(args.a, args.b, args.limit)
        if not past:
            print(f"No completed conversations between {args.a} and {args.b}.")
        for c in past:
            print(f"#{c.conversation_id}  {c.speaker_a_name} & {c.speaker_b_name}  turns={c.total_turns}  at={c.created_at}")
            print(f"    first: {_short(c.first_message)}")
            print(f"    last:  {_short(c.last_message)}")
        return 0
    except DialogueError as e:
        logger.error(f"list_conversations_failed | err={e}")
        return 1
    finally:
        if store is not None:
            store.close()
        run_log.close()


if __name__ == "__main__":
    sys.exit(main())
