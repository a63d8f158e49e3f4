"""In-game calendar: twelve 时辰 a day, 90-day seasons, season-scoped weather.

    hour_of_day         0..11 (子时 .. 亥时); reaching 12 rolls a new day
    total_days_elapsed  starts at 1
    season              SEASONS[((days - 1) // 90) % 4], always derived from days
    weather             re-rolled from the season's table when a day rolled
                        over or a single advance spans REROLL_HOURS or more;
                        left alone otherwise

Because of the re-roll rule, advance(a); advance(b) lands on the same hour
and day as advance(a + b) but may end with different weather.
"""

from __future__ import annotations

import logging
import random

from sect_chronicle.models import ClockDelta, GameClock, Season

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 12
DAYS_PER_SEASON = 90
REROLL_HOURS = 3

SEASONS: tuple[Season, ...] = ("spring", "summer", "autumn", "winter")
SEASON_NAMES = {"spring": "春", "summer": "夏", "autumn": "秋", "winter": "冬"}
HOUR_NAMES = ("子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥")

WEATHER: dict[str, tuple[str, ...]] = {
    "spring": ("晴", "多云", "小雨", "春雨绵绵", "薄雾"),
    "summer": ("烈日", "晴", "雷阵雨", "闷热", "暴雨"),
    "autumn": ("秋高气爽", "阴", "秋雨", "大风", "晴"),
    "winter": ("晴冷", "阴", "小雪", "大雪", "寒风"),
}


def season_for(total_days_elapsed: int) -> Season:
    return SEASONS[((total_days_elapsed - 1) // DAYS_PER_SEASON) % len(SEASONS)]


def roll_weather(season: str, rng: random.Random) -> str:
    return rng.choice(WEATHER[season])


def new_clock(rng: random.Random | None = None, hour_of_day: int = 4) -> GameClock:
    """A fresh clock on day one, with weather rolled for spring."""
    rng = rng or random.Random()
    return GameClock(
        hour_of_day=hour_of_day,
        total_days_elapsed=1,
        season=season_for(1),
        weather=roll_weather(season_for(1), rng),
    )


def advance_clock(clock: GameClock, hours: int, rng: random.Random) -> tuple[GameClock, ClockDelta]:
    """Pure transition: return the advanced clock and what changed."""
    if hours < 1:
        raise ValueError(f"advance needs at least one hour, got {hours}")

    days_rolled, hour = divmod(clock.hour_of_day + hours, HOURS_PER_DAY)
    days = clock.total_days_elapsed + days_rolled
    season = season_for(days)

    weather = clock.weather
    rerolled = days_rolled > 0 or hours >= REROLL_HOURS
    if rerolled:
        weather = roll_weather(season, rng)

    after = GameClock(hour_of_day=hour, total_days_elapsed=days, season=season, weather=weather)
    delta = ClockDelta(
        hours=hours,
        days_rolled=days_rolled,
        season_changed=season != clock.season,
        weather_rerolled=rerolled,
        before=clock,
        after=after,
    )
    return after, delta


def describe(clock: GameClock) -> str:
    """Human label, e.g. "第2天 · 春 · 寅时 · 小雨"."""
    return (
        f"第{clock.total_days_elapsed}天 · {SEASON_NAMES[clock.season]} · "
        f"{HOUR_NAMES[clock.hour_of_day]}时 · {clock.weather}"
    )


class Calendar:
    """Owns the game clock; callers request advances, never edit fields."""

    def __init__(self, clock: GameClock | None = None, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._clock = clock or new_clock(self._rng)

    @property
    def clock(self) -> GameClock:
        return self._clock

    def fresh_clock(self) -> GameClock:
        """A day-one clock for a new game, drawn from this calendar's rng."""
        return new_clock(self._rng)

    def restore(self, clock: GameClock) -> None:
        """Put back a clock loaded from persistence or a snapshot."""
        self._clock = clock

    def advance(self, hours: int) -> ClockDelta:
        self._clock, delta = advance_clock(self._clock, hours, self._rng)
        if delta.days_rolled:
            logger.debug("day rollover: %s", describe(self._clock))
        return delta

    def describe(self) -> str:
        return describe(self._clock)
