# JobScout - LinkedIn Job Scraping Sessions
# Version 0.1.0

"""
JobScout runs LinkedIn job searches as tracked, resumable scraping sessions.

Layers:
1. Anti-Blocking Engine - Delays, identity rotation and humanised interaction
2. Navigator - Result pages, pagination and job-card extraction
3. Scrape Orchestrator - Session state machine, retries and the page loop
4. Status Service - Progress reads, commands and live updates
"""

__version__ = "0.1.0"
