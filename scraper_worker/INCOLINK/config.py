"""
Configuration for the Incolink ComplianceLink portal sync
"""

# Base URL
PORTAL_URL = "https://compliancelink.incolink.org.au/"

# Login form
EMAIL_SELECTORS = ['input[type="email"]', 'input[placeholder*="Email" i]']
PASSWORD_SELECTORS = ['input[type="password"]', 'input[placeholder*="Password" i]']
TERMS_CHECKBOX_SELECTOR = "#termsAndConditionsAccepted"
LOGIN_BUTTON_SELECTOR = "#loginButton"
FALLBACK_SUBMIT_SELECTORS = ['button[type="submit"]', 'button']

# The employer search box lives inside a frame; tried in this order
EMPLOYER_SEARCH_SELECTORS = [
    '#formEmployerSearch',
    'input[name="employerSearch.SearchText"]',
    'input[placeholder*="No or Name" i]',
    'input[type="search"]',
]

# Member listings render either as a table or as an ARIA grid
RESULTS_SELECTORS = ['table tbody tr', 'div[role="grid"] div[role="row"]']
TABLE_ROW_SELECTOR = "table tbody tr, table tr"
GRID_ROW_SELECTOR = 'div[role="grid"] div[role="row"]'

# Timeouts (milliseconds)
NAVIGATION_TIMEOUT = 60000  # 60 seconds
SEARCH_INPUT_TIMEOUT = 30000  # 30 seconds
RESULTS_TIMEOUT = 20000  # 20 seconds

# Typing delays (milliseconds per keystroke)
CREDENTIAL_TYPING_DELAY = 20
SEARCH_TYPING_DELAY = 25

# Delays (in seconds)
DELAY_AFTER_SEARCH = 1.5
DELAY_AFTER_INVOICE_CLICK = 1
DELAY_BETWEEN_EMPLOYERS = 1.5

# Placeholder row text that isn't a member
PLACEHOLDER_TEXTS = {"default"}
