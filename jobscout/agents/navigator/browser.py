"""
Browser automation contract used by the navigator.

The navigator only ever talks to a BrowserHandle, so the concrete transport
(local Playwright, a remote automation service, a scripted page for demos)
is an implementation choice.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Tuple

from jobscout.core.schemas import BrowserFingerprint, PageResponse


class CardElement(ABC):
    """A single job card, queried relative to its own root."""

    @abstractmethod
    async def text(self, selector: str) -> Optional[str]:
        """Trimmed text of the first match, or None when absent."""

    @abstractmethod
    async def attribute(self, selector: str, name: str) -> Optional[str]:
        """Attribute of the first match, or None when absent."""

    @abstractmethod
    async def has(self, selector: str) -> bool:
        """Whether any element matches."""


class BrowserHandle(ABC):
    """Page-level automation primitives. All timeouts are in milliseconds."""

    @property
    @abstractmethod
    def url(self) -> str:
        """URL of the currently loaded page."""

    @abstractmethod
    async def apply_fingerprint(self, fingerprint: BrowserFingerprint) -> None:
        """Present a new identity (user agent, viewport, locale) from now on."""

    @abstractmethod
    async def goto(self, url: str, timeout_ms: int) -> PageResponse:
        """Navigate and wait for the page to settle."""

    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        """Wait for a selector. Returns False on timeout instead of raising."""

    @abstractmethod
    async def has_element(self, selector: str) -> bool:
        pass

    @abstractmethod
    async def text_of(self, selector: str) -> Optional[str]:
        pass

    @abstractmethod
    async def count(self, selector: str) -> int:
        pass

    @abstractmethod
    async def is_enabled(self, selector: str) -> bool:
        """Present and without a disabled attribute."""

    @abstractmethod
    async def element_center(self, selector: str) -> Optional[Tuple[float, float]]:
        """Viewport coordinates of the element's centre, None if not rendered."""

    @abstractmethod
    async def scroll_into_view(self, selector: str) -> None:
        pass

    @abstractmethod
    async def scroll_by(self, pixels: int, behavior: str = "smooth") -> None:
        pass

    @abstractmethod
    async def mouse_move(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def mouse_click(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def query_all(self, selector: str) -> List[CardElement]:
        pass

    @abstractmethod
    async def wait(self, ms: int) -> None:
        """Idle on the page for a fixed time."""

    @abstractmethod
    async def close(self) -> None:
        pass
