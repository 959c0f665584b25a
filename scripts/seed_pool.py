import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from matchcore.database import init_schema, make_engine, make_session_factory
from matchcore.services.seeding import seed_pool


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a synthetic matching pool")
    parser.add_argument("--n-users", type=int, default=100)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--reset", action="store_true")
    args = parser.parse_args()

    engine = make_engine()
    init_schema(engine)
    SessionLocal = make_session_factory(engine)
    with SessionLocal() as db:
        summary = seed_pool(db, n_users=args.n_users, seed=args.seed, reset=args.reset)

    print("Seed completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
