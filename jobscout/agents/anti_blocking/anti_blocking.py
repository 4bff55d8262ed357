"""
Anti-Blocking Engine

Produces bounded-random timing and identity values so repeated automated
requests do not present a uniform signature:
1. Round-robin user agents and viewports
2. Random and load-adaptive delays
3. Rate-limit classification and exponential backoff
4. Humanised mouse, scroll and typing sequences

One engine belongs to one scraping session. Counters are never shared.
"""

import logging
import random
import time
from typing import Optional, List, Dict, Any, Callable

from jobscout.core.config import AntiBlockingSettings
from jobscout.core.schemas import (
    BrowserFingerprint, Viewport, MouseMovement, InteractionStep
)

logger = logging.getLogger(__name__)


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/120.0",
]

VIEWPORTS = [
    (1920, 1080),
    (1366, 768),
    (1440, 900),
    (1536, 864),
    (1280, 720),
]

TIMEZONES = ["Asia/Jakarta", "Asia/Singapore", "Asia/Kuala_Lumpur", "Asia/Bangkok", "Asia/Manila"]
LANGUAGES = ["en-US", "en-GB", "id-ID"]
PLATFORMS = ["Win32", "MacIntel", "Linux x86_64"]
SCROLL_PATTERNS = ["smooth", "instant", "auto"]

PUNCTUATION = set(".,!?;:")

# Rate limiting
RATE_LIMIT_STATUS_CODES = (429, 503)
SLOW_RESPONSE_MS = 10000
MAX_BACKOFF_MS = 60000

# Adaptive delay thresholds (request count -> multiplier)
ADAPTIVE_STEPS = ((50, 2.0), (20, 1.5))


class AntiBlockingEngine:
    """
    Session-scoped generator of delays, fingerprints and interaction patterns.

    Randomness and the clock are injectable so sequences are reproducible
    under test.
    """

    def __init__(
        self,
        config: Optional[AntiBlockingSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the engine.

        Args:
            config: Delay window and rotation toggles
            rng: Random source (a fresh unseeded one by default)
            clock: Monotonic clock in seconds
        """
        self.config = config or AntiBlockingSettings()
        self.rng = rng or random.Random()
        self.clock = clock

        self.user_agent_index = 0
        self.viewport_index = 0
        self.request_count = 0
        self.session_start = self.clock()
        self.rotations = 0

    # =========================================================================
    # Identity rotation
    # =========================================================================

    def next_user_agent(self) -> str:
        """Return the next user agent in round-robin order."""
        user_agent = USER_AGENTS[self.user_agent_index]
        self.user_agent_index = (self.user_agent_index + 1) % len(USER_AGENTS)
        return user_agent

    def next_viewport(self) -> Viewport:
        """Return the next viewport in round-robin order."""
        width, height = VIEWPORTS[self.viewport_index]
        self.viewport_index = (self.viewport_index + 1) % len(VIEWPORTS)
        return Viewport(width=width, height=height)

    def browser_fingerprint(self) -> BrowserFingerprint:
        """Bundle a rotated user agent and viewport with random locale values."""
        return BrowserFingerprint(
            user_agent=self.next_user_agent(),
            viewport=self.next_viewport(),
            timezone=self.rng.choice(TIMEZONES),
            language=self.rng.choice(LANGUAGES),
            platform=self.rng.choice(PLATFORMS),
        )

    def should_rotate_session(self) -> bool:
        """
        True when the current identity has aged out.

        Age is measured in wall-clock time since the last reset and in
        requests issued since then.
        """
        if not self.config.session_rotation:
            return False
        elapsed = self.clock() - self.session_start
        return (
            elapsed > self.config.max_session_minutes * 60
            or self.request_count > self.config.max_requests_per_session
        )

    def reset_session(self) -> None:
        """Start a fresh identity window."""
        self.session_start = self.clock()
        self.request_count = 0
        self.rotations += 1
        logger.debug(f"Anti-blocking session reset (rotation #{self.rotations})")

    def record_request(self) -> None:
        """Count one request against the current identity."""
        self.request_count += 1

    # =========================================================================
    # Timing
    # =========================================================================

    def random_delay(self) -> int:
        """Uniform integer delay in the configured window, in milliseconds."""
        return self.rng.randint(self.config.min_delay_ms, self.config.max_delay_ms)

    def adaptive_delay(self) -> int:
        """Random delay scaled up under sustained load."""
        base = self.random_delay()
        for threshold, factor in ADAPTIVE_STEPS:
            if self.request_count > threshold:
                return int(base * factor)
        return base

    def jitter(self, max_ms: int) -> int:
        """Random extra delay in [0, max_ms]."""
        if max_ms <= 0:
            return 0
        return self.rng.randint(0, max_ms)

    def is_rate_limited(self, response_time_ms: float, status_code: Optional[int] = None) -> bool:
        """Classify a response as rate limited. Pure, no I/O."""
        if status_code in RATE_LIMIT_STATUS_CODES:
            return True
        return response_time_ms > SLOW_RESPONSE_MS

    def backoff_delay(self, attempt: int) -> int:
        """
        Exponential backoff with jitter.

        Args:
            attempt: Retry attempt number, starting at 1

        Returns:
            Delay in milliseconds, at most 60 seconds
        """
        base = (2 ** attempt) * 1000
        return int(min(base + self.rng.random() * 1000, MAX_BACKOFF_MS))

    # =========================================================================
    # Humanised interaction
    # =========================================================================

    def mouse_movements(self) -> List[MouseMovement]:
        """Two to four random pointer moves. Empty when disabled."""
        if not self.config.mouse_movements:
            return []
        return [
            MouseMovement(
                x=self.rng.randint(100, 899),
                y=self.rng.randint(100, 699),
                delay_ms=self.rng.randint(200, 699),
            )
            for _ in range(self.rng.randint(2, 4))
        ]

    def scroll_amount(self) -> int:
        """Scroll distance in pixels, 300 to 799."""
        return self.rng.randint(300, 799)

    def scroll_pattern(self) -> str:
        return self.rng.choice(SCROLL_PATTERNS)

    def typing_delays(self, text: str) -> List[int]:
        """Per-character keystroke delays; spaces and punctuation are slower."""
        delays = []
        for char in text:
            delay = self.rng.randint(50, 149)
            if char == " ":
                delay += self.rng.randint(100, 199)
            elif char in PUNCTUATION:
                delay += self.rng.randint(50, 199)
            delays.append(delay)
        return delays

    def page_interaction_pattern(self) -> List[InteractionStep]:
        """Pause, scroll, pause, pointer move, pause."""
        return [
            InteractionStep(action="pause", delay_ms=self.random_delay()),
            InteractionStep(action="scroll", value=self.scroll_amount(), delay_ms=1000),
            InteractionStep(action="pause", delay_ms=self.random_delay()),
            InteractionStep(action="mouse_move", delay_ms=500),
            InteractionStep(action="pause", delay_ms=self.random_delay()),
        ]

    # =========================================================================
    # Metrics
    # =========================================================================

    def metrics(self) -> Dict[str, Any]:
        return {
            "request_count": self.request_count,
            "session_duration_ms": int((self.clock() - self.session_start) * 1000),
            "user_agent_index": self.user_agent_index,
            "viewport_index": self.viewport_index,
            "rotations": self.rotations,
        }
