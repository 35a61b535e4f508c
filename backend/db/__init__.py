# Database utilities package
from .sql import (
    execute_sql,
    run_sql,
    run_sql_scalar,
    run_sql_one,
)
from .engine import get_engine, get_session_factory, dispose_engines
from .schema import create_schema, run_migrations
from .crawl_ledger import CrawlLedger
