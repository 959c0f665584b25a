import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from matchcore.config import LOG_LEVEL, load_matching_config
from matchcore.database import make_engine, make_session_factory
from matchcore.services.matching import run_batch


def main() -> None:
    parser = argparse.ArgumentParser(description="Run compatibility matching for one batch")
    parser.add_argument("--batch", type=int, required=True)
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--matches-per-user", type=int, default=None)
    parser.add_argument("--min-score", type=float, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    overrides = {}
    if args.matches_per_user is not None:
        overrides["matches_per_user"] = args.matches_per_user
    if args.min_score is not None:
        overrides["min_match_score"] = args.min_score
    cfg = load_matching_config(overrides)

    SessionLocal = make_session_factory(make_engine())
    with SessionLocal() as db:
        result = run_batch(db, args.batch, cfg=cfg, dry_run=args.dry_run)

    print(json.dumps(result.stats.as_dict(), indent=2))


if __name__ == "__main__":
    main()
