from floorcheck.database import SessionLocal, init_db
from floorcheck.models import ChecklistTemplate
from floorcheck.seed_data import seed_database
from dotenv import load_dotenv
import time
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database(max_retries: int = 5):
    load_dotenv()

    # The database container may still be starting
    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting database initialization (attempt {attempt + 1}/{max_retries})")
            init_db()
            logger.info("Database tables created successfully!")

            db = SessionLocal()
            try:
                if db.query(ChecklistTemplate).count() == 0:
                    seed_database(db)
                    logger.info("Database seeded successfully!")
                else:
                    logger.info("Templates already present, skipping seeding")
                break
            finally:
                db.close()
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            if attempt < max_retries - 1:
                logger.info("Retrying in 5 seconds...")
                time.sleep(5)
            else:
                logger.error("All database initialization attempts failed")
                raise


if __name__ == "__main__":
    init_database()
