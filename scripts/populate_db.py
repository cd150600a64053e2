#!/usr/bin/env python3
"""Script to populate the database with an exercise catalog and sample routine."""

import os
import sys

from dotenv import load_dotenv
from loguru import logger

# Add src to path so we can import our modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from database import Base, SessionLocal, engine
from errors import RoutineError
from models import ExerciseDB, UserDB
from routine_builder import RoutineBuilder
from routine_store import SqlRoutineStore
from typedefs import ExercisePick

# Load environment variables
load_dotenv()

CATALOG = [
    ExercisePick(id="back-squat", name="Back Squat"),
    ExercisePick(id="bench-press", name="Bench Press"),
    ExercisePick(id="barbell-row", name="Barbell Row"),
    ExercisePick(id="romanian-deadlift", name="Romanian Deadlift"),
    ExercisePick(id="overhead-press", name="Overhead Press"),
    ExercisePick(id="pull-up", name="Pull-up"),
    ExercisePick(id="plank", name="Plank"),
]


def create_tables():
    Base.metadata.create_all(bind=engine)
    logger.info("Created database tables")


def create_catalog():
    """Insert catalog exercises that don't exist yet."""
    db = SessionLocal()
    try:
        existing = {row.id for row in db.query(ExerciseDB.id).all()}
        new = [
            ExerciseDB(id=pick.id, name=pick.name, image_url=pick.image_url)
            for pick in CATALOG
            if pick.id not in existing
        ]
        db.add_all(new)
        db.commit()
        logger.info("Catalog populated", added=len(new), total=len(CATALOG))
    finally:
        db.close()


def create_sample_routine():
    """Create a routine with a superset for the first user."""
    db = SessionLocal()
    try:
        test_user = db.query(UserDB).first()
        if not test_user:
            logger.warning("No users found. Log in once through the API to create one.")
            return

        store = SqlRoutineStore(db, test_user.id)
        routine = store.create_routine(
            "Full Body Strength", description="Squat, push/pull superset, core"
        )
        builder = RoutineBuilder.load(store, routine.id)

        squat = builder.add_block(CATALOG[0])[-1]
        builder.set_block_sets(squat.id, 2)
        builder.set_block_rest(squat.id, 90)

        press = builder.add_block(CATALOG[1])[-1]
        builder.convert_to_superset(press.id)
        builder.select_exercise_for_block(press.id, CATALOG[2])
        builder.set_exercise_weight_at_set(press.id, 0, 0, 60)

        builder.add_block(CATALOG[6])
        rows = builder.save()

        logger.info(
            "Created sample routine",
            routine_id=routine.id,
            user=test_user.email,
            rows=len(rows),
        )
    except RoutineError as e:
        logger.error(f"Error populating database: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Populate database with test data")
    parser.add_argument(
        "--init", action="store_true", help="Create tables before populating"
    )
    parser.add_argument(
        "--catalog", action="store_true", help="Only populate the exercise catalog"
    )
    parser.add_argument(
        "--routine", action="store_true", help="Only create the sample routine"
    )
    args = parser.parse_args()

    if args.init:
        create_tables()

    populate_all = not (args.catalog or args.routine)
    if populate_all or args.catalog:
        create_catalog()
    if populate_all or args.routine:
        create_sample_routine()
