"""
LinkedIn job-search DOM selectors.

Grouped alternatives are comma-joined so a single query matches both the
guest and the signed-in result layouts.
"""

# Page verification
JOBS_URL_MARKER = "linkedin.com/jobs"
RESULTS_CONTAINERS = (
    ".jobs-search-results",
    '[data-test-id="jobs-search-results"]',
)
RESULTS_CONTAINER = ".jobs-search-results"

# Blocking
BLOCKED_URL_MARKERS = ("/authwall", "/checkpoint", "/uas/login", "/login")
CAPTCHA = '#captcha-internal, iframe[src*="captcha"], .challenge-dialog'

# Pagination
PAGINATION = ".artdeco-pagination"
PAGE_COUNT_CANDIDATES = (
    ".artdeco-pagination__pages li:last-child button",
    ".artdeco-pagination__page-state",
    "[data-test-pagination-page-btn]:last-child",
)
PAGE_BUTTON = "[data-test-pagination-page-btn]"
PAGE_BUTTON_NUMBERED = '[data-test-pagination-page-btn="{page}"]'
NEXT_BUTTON = '[aria-label="Next"]'

# Job cards
JOB_CARD = ".job-search-card, .jobs-search-results__list-item"
CARD_TITLE = ".job-search-card__title a, .job-card-list__title a"
CARD_COMPANY = ".job-search-card__subtitle a, .job-card-container__company-name"
CARD_LOCATION = ".job-search-card__location, .job-card-container__metadata-item"
CARD_POSTED = ".job-search-card__listdate, .job-card-list__date"
CARD_LOGO = "img.artdeco-entity-image"
CARD_EASY_APPLY = ".job-search-card__easy-apply-button, [data-easy-apply-button]"
CARD_PROMOTED = ".job-search-card__promoted, .job-card-container__promoted"
