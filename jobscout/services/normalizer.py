"""Match scoring and job record assembly."""

from typing import Optional, Iterable

from jobscout.core.schemas import RawJobCard, ScrapedJob, TITLE_SHORT_LENGTH, utcnow
from jobscout.core.database import generate_uuid


BASE_SCORE = 50
EASY_APPLY_BONUS = 10
PRIORITY_CITY_BONUS = 5
RECENT_POST_BONUS = 15


def calculate_match_score(card: RawJobCard, priority_cities: Iterable[str] = ("jakarta",)) -> int:
    """
    Heuristic 0-100 fit score for a raw card.

    Base 50, +10 for Easy Apply, +5 for a priority city in the location,
    +15 when the posted time is day-scale ("2 days ago").
    """
    score = BASE_SCORE
    if card.is_easy_apply:
        score += EASY_APPLY_BONUS

    location = card.location.lower()
    if any(city.lower() in location for city in priority_cities):
        score += PRIORITY_CITY_BONUS

    if "day" in card.posted_time.lower():
        score += RECENT_POST_BONUS

    return max(0, min(score, 100))


def build_job_record(
    card: RawJobCard,
    session_id: str,
    user_id: str,
    cv_id: Optional[str] = None,
    priority_cities: Iterable[str] = ("jakarta",),
) -> ScrapedJob:
    """Normalise a raw card into a job record tagged with its session."""
    insights = []
    if card.is_promoted:
        insights.append("Promoted")
    if card.is_easy_apply:
        insights.append("Easy Apply")

    return ScrapedJob(
        id=generate_uuid(),
        session_id=session_id,
        user_id=user_id,
        cv_id=cv_id,
        source_url=card.job_url,
        title=card.title,
        title_short=card.title[:TITLE_SHORT_LENGTH],
        company=card.company,
        company_logo_url=card.company_logo_url,
        location=card.location,
        posted_time=card.posted_time,
        match_score=calculate_match_score(card, priority_cities),
        easy_apply=card.is_easy_apply,
        insight_status="promoted" if card.is_promoted else "normal",
        insights=insights,
        scraped_at=utcnow(),
    )
