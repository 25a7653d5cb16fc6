"""
Configuration for the Fair Work Commission (FWC) agreement lookup
"""

# Base URL
BASE_URL = "https://www.fwc.gov.au"
SEARCH_URL = f"{BASE_URL}/document-search"

# Every query is also tried with this prefix to steer results towards
# NSW construction agreements
QUERY_PREFIX = "cfmeu construction nsw"

# Search parameters
SEARCH_OPTIONS = "SearchType_3,SortOrder_agreement-relevance,ExpiryFromDate_01/01/2024"
SEARCH_PAGE_SIZE = 50
SEARCH_FACETS = (
    "AgreementStatusDesc_Approved,"
    "AgreementType_Single-enterprise Agreement,"
    "AgreementIndustry_Building metal and civil construction industries"
)

# Timeouts (milliseconds)
DEFAULT_NAVIGATION_TIMEOUT = 60000  # 60 seconds
SEARCH_TIMEOUT = 45000  # 45 seconds
VIEW_MODEL_TIMEOUT = 30000  # 30 seconds

# Delays (in seconds)
DELAY_BETWEEN_EMPLOYERS = 1

# Number of search results recorded on events
MAX_LOGGED_RESULTS = 15

# Defaults for results that omit these fields
DEFAULT_AGREEMENT_TYPE = "Single-enterprise Agreement"
DEFAULT_STATUS = "Unknown"

# Legacy result titles shorter than this are navigation links, not agreements
MIN_TITLE_LENGTH = 10
