"""
Centralized Constants - SINGLE SOURCE OF TRUTH

Crawl ledger states and catalog URL shape. Import from here rather than
repeating string literals in queries.
"""

# =============================================================================
# CRAWL PROGRESS STATES
# =============================================================================
#
#   (absent) -> pending -> completed
#                       -> failed -> pending (explicit reset)
#

STATUS_PENDING = 'pending'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

PROGRESS_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED)

# Statuses that make a URL eligible for (re)fetching
REFETCH_STATUSES = (STATUS_PENDING, STATUS_FAILED)


# =============================================================================
# CATALOG URL SHAPE
# =============================================================================
#
# /{model}/{frame}/{trim}/{group}/{subgroup}/{detail}/
#

GROUP_SEGMENT = 3
SUBGROUP_SEGMENT = 4

# Subgroup listing pages stop at the subgroup segment
SUBGROUP_LISTING_DEPTH = 5
