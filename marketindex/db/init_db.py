import logging

from sqlalchemy import inspect

from marketindex.db.session import engine
from marketindex.db.base import Base

logger = logging.getLogger(__name__)


def create_all_tables(bind=None) -> bool:
    bind = bind or engine
    try:
        existing_tables = inspect(bind).get_table_names()

        Base.metadata.create_all(bind=bind)

        new_tables = set(inspect(bind).get_table_names()) - set(existing_tables)
        if new_tables:
            logger.info(f"Created new tables: {new_tables}")

        return True
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        return False


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("Creating database tables")
    create_all_tables()
    logger.info("Database tables created")
