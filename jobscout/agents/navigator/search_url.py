"""Deterministic LinkedIn search URL construction."""

from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from jobscout.core.schemas import SearchParams, ExperienceLevel, JobType, DatePosted


SEARCH_BASE_URL = "https://www.linkedin.com/jobs/search/"

EXPERIENCE_CODES = {
    ExperienceLevel.ENTRY: "1",
    ExperienceLevel.ASSOCIATE: "2",
    ExperienceLevel.MID: "3",
    ExperienceLevel.SENIOR: "4",
}

JOB_TYPE_CODES = {
    JobType.FULL_TIME: "F",
    JobType.PART_TIME: "P",
    JobType.CONTRACT: "C",
    JobType.TEMPORARY: "T",
}

DATE_POSTED_CODES = {
    DatePosted.PAST_24H: "r86400",
    DatePosted.PAST_WEEK: "r604800",
    DatePosted.PAST_MONTH: "r2592000",
}


def build_search_url(params: SearchParams) -> str:
    """
    Map a search snapshot onto LinkedIn's query string.

    Only the first location is used; LinkedIn searches one location at a time.
    The same params always produce the same URL.
    """
    query = []
    if params.keywords:
        query.append(("keywords", " ".join(params.keywords)))
    if params.locations:
        query.append(("location", params.locations[0]))
    if params.experience_level:
        query.append(("f_E", EXPERIENCE_CODES.get(params.experience_level, "1")))
    if params.job_types:
        codes = [JOB_TYPE_CODES[job_type] for job_type in params.job_types]
        query.append(("f_JT", ",".join(codes)))
    if params.date_posted:
        query.append(("f_TPR", DATE_POSTED_CODES.get(params.date_posted, "r2592000")))
    if params.easy_apply:
        query.append(("f_LF", "f_AL"))
    if params.remote_work:
        query.append(("f_WT", "2"))
    return f"{SEARCH_BASE_URL}?{urlencode(query)}"


def with_page_offset(url: str, page: int, page_size: int = 25) -> str:
    """Return the URL with its `start` offset set for a 1-based page number."""
    parts = urlsplit(url)
    query = [(key, value) for key, value in parse_qsl(parts.query) if key != "start"]
    query.append(("start", str((page - 1) * page_size)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def page_from_offset(url: str, page_size: int = 25) -> int:
    """Inverse of with_page_offset. Missing or malformed offsets map to page 1."""
    for key, value in parse_qsl(urlsplit(url).query):
        if key == "start" and value.isdigit():
            return int(value) // page_size + 1
    return 1


def strip_tracking(url: str) -> str:
    """Canonical listing URL: no query string and no fragment."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
