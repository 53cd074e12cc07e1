"""Data models for the photo frame catalog."""

import re
from dataclasses import dataclass
from enum import IntEnum

SCHEDULE_TIME_PATTERN = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")


class Category(IntEnum):
    """Where a photo came from. The integer value is what the catalog stores."""

    SURPRISE = 0
    LIBRARY = 1

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: "int | str | Category") -> "Category":
        """Parse a category from its stored integer, a numeric string or a label.

        Args:
            value: Category value such as ``1``, ``"0"`` or ``"library"``

        Returns:
            The matching Category

        Raises:
            ValueError: If the value does not name a category
        """
        if isinstance(value, Category):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                value = int(text)
            else:
                try:
                    return cls[text.upper()]
                except KeyError:
                    raise ValueError(f"Unknown category: {value!r}") from None
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Category must be 0 (surprise) or 1 (library), got {value!r}"
            ) from None


@dataclass(frozen=True)
class PhotoRecord:
    """A photo registered in the catalog."""

    name: str
    category: Category
    order: int

    def __post_init__(self) -> None:
        """Validate photo record."""
        if not self.name:
            raise ValueError("Photo name cannot be empty")
        if self.order < 0:
            raise ValueError(f"Photo order must be non-negative, got {self.order}")


@dataclass(frozen=True)
class AppSettings:
    """Slideshow settings, stored as a singleton row."""

    interval_seconds: int = 15
    include_surprise: bool = True
    shuffle: bool = False

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.interval_seconds <= 0:
            raise ValueError("Slideshow interval must be positive")


@dataclass(frozen=True)
class Schedule:
    """Daily window during which the display is switched on."""

    enabled: bool = True
    start: str = "06:00"
    end: str = "23:00"

    def __post_init__(self) -> None:
        """Validate schedule times."""
        if not SCHEDULE_TIME_PATTERN.match(self.start):
            raise ValueError(f"Invalid start time format: need HH:MM, got {self.start}")
        if not SCHEDULE_TIME_PATTERN.match(self.end):
            raise ValueError(f"Invalid end time format: need HH:MM, got {self.end}")


@dataclass(frozen=True)
class PhotoPage:
    """One page of a category listing."""

    photos: list[PhotoRecord]
    total: int
    page: int
    limit: int
