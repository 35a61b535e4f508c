"""
Catalog harvester configuration - environment-based settings.

Environment Variables:
    DATABASE_URL: SQLAlchemy URL of the catalog store
        (default: sqlite:///data/catalog.db)
    IMAGES_DIR: Directory diagram images are written to (default: images)
    CATALOG_ORIGIN: Scheme + host of the catalog site
    CATALOG_MODEL / FRAME_NAME / TRIM_CODE: Path segments selecting the
        vehicle whose catalog is harvested
    FRAME_NUMBER: Frame number passed as ?frame_no= on detail pages
    FETCHER_CONFIG: Optional path to a YAML file overriding fetcher tuning
"""
import os
import logging
from typing import Optional

from dotenv import load_dotenv

from utils.normalize import to_str

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///data/catalog.db'


def get_database_url() -> str:
    """
    Get the catalog store URL.

    Relative SQLite paths are resolved against the current working directory,
    and the parent directory is created so a fresh checkout can run straight away.
    """
    database_url = to_str(os.getenv('DATABASE_URL'), default=DEFAULT_DATABASE_URL)

    if database_url.startswith('sqlite:///') and database_url != 'sqlite:///:memory:':
        db_file = database_url[len('sqlite:///'):]
        parent = os.path.dirname(db_file)
        if parent:
            os.makedirs(parent, exist_ok=True)

    return database_url


def get_images_dir() -> str:
    return to_str(os.getenv('IMAGES_DIR'), default='images')


def get_fetcher_config_path() -> Optional[str]:
    return to_str(os.getenv('FETCHER_CONFIG'))


def get_catalog_base_url() -> str:
    """
    Build the catalog root URL: {origin}/{model}/{frame}/{trim}/

    Every listing and detail URL of the harvested vehicle lives below this root.
    """
    origin = to_str(os.getenv('CATALOG_ORIGIN'), default=Config.CATALOG_ORIGIN).rstrip('/')
    model = to_str(os.getenv('CATALOG_MODEL'), default=Config.CATALOG_MODEL)
    frame = to_str(os.getenv('FRAME_NAME'), default=Config.FRAME_NAME)
    trim = to_str(os.getenv('TRIM_CODE'), default=Config.TRIM_CODE)
    return f"{origin}/{model}/{frame}/{trim}/"


def get_frame_number() -> str:
    return to_str(os.getenv('FRAME_NUMBER'), default='')


class Config:
    CATALOG_ORIGIN = 'https://mitsubishi.epc-data.com'
    CATALOG_MODEL = 'delica_space_gear'
    FRAME_NAME = 'pd6w'
    TRIM_CODE = 'hseue9'

    # Stored image_path values are "<prefix>/<filename>", relative to the
    # directory that contains IMAGES_DIR.
    IMAGE_PATH_PREFIX = 'images'

    # Tag assignments are inserted in batches of this size
    TAG_BATCH_SIZE = 500


def log_config() -> None:
    """Log the effective configuration (no secrets are held here)."""
    logger.info("Catalog harvester configuration:")
    logger.info(f"  Database:    {get_database_url()}")
    logger.info(f"  Images dir:  {get_images_dir()}")
    logger.info(f"  Catalog URL: {get_catalog_base_url()}")
    logger.info(f"  Frame no:    {get_frame_number() or '(none)'}")
