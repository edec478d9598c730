#!/usr/bin/env python3
"""
Top up rule categories to the minimum rule count from the built-in templates.

Usage (from the project root):
  .venv/bin/python scripts/generate_category_rules.py --category-id 3
  .venv/bin/python scripts/generate_category_rules.py --all --minimum 12

DATABASE_URL must be set in the environment or in .env.
"""
import argparse
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from src.hospitality_engine.database import SessionLocal, engine
from src.hospitality_engine.services.named_lock import build_lock_provider, LockAcquisitionError
from src.hospitality_engine.services.rule_catalog import RuleCatalog, CategoryNotFoundError, list_categories
from src.hospitality_engine.services.rule_generator import ensure_category_rules


def main():
    parser = argparse.ArgumentParser(
        description="Generate template rules for categories below the minimum rule count"
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--category-id", type=int, help="Category to top up")
    target.add_argument("--all", action="store_true", help="Top up every category")
    parser.add_argument("--minimum", type=int, default=None, help="Minimum rules per category (defaults to MIN_RULES_PER_CATEGORY)")
    args = parser.parse_args()

    catalog = RuleCatalog(SessionLocal)
    lock_provider = build_lock_provider(engine)

    db = SessionLocal()
    try:
        if args.all:
            category_ids = [c.id for c in list_categories(db)]
        else:
            category_ids = [args.category_id]

        for category_id in category_ids:
            result = ensure_category_rules(db, category_id, catalog, lock_provider, minimum=args.minimum)
            print(f"category {category_id}: generated {result.generated}, total {result.total}")
    except CategoryNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except LockAcquisitionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
