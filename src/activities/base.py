"""Base classes and canonical data models for the Cadence activity engine.

Every provider adapter must subclass ProviderAdapter and return canonical
ActivityRecord instances.  These types are the single source of truth
consumed by the deduplicator, the aggregation cache, the running totals and
the API layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import AsyncIterator

logger = logging.getLogger("cadence.activities")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Raised by an adapter when a fetch or authorization call fails.

    The aggregator never lets this escape a bulk load: the failing provider
    contributes zero records and the error goes to the observability sink.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


# ---------------------------------------------------------------------------
# Classification enums
# ---------------------------------------------------------------------------


class ActivityType(str, Enum):
    """Canonical activity classification.

    Values are persisted in the cached timeline and must not change once
    released.
    """

    RUN = "Run"
    DOG_RUN = "DogRun"
    STROLLER_RUN = "StrollerRun"
    TREADMILL_RUN = "TreadmillRun"
    TRAIL_RUN = "TrailRun"
    BIKE_RIDE = "Ride"
    EBIKE_RIDE = "EBikeRide"
    COMMUTE_RIDE = "CommuteRide"
    RECUMBENT_RIDE = "RecumbentRide"
    VIRTUAL_RIDE = "VirtualRide"
    HAND_CYCLING = "HandCycling"
    WALK = "Walk"
    DOG_WALK = "DogWalk"
    STROLLER_WALK = "StrollerWalk"
    TREADMILL_WALK = "TreadmillWalk"
    HOT_GIRL_WALK = "HotGirlWalk"
    WALK_WITH_CANE = "WalkWithCane"
    WALK_WITH_WALKER = "WalkWithWalker"
    WALKING_MEETING = "WalkingMeeting"
    DESK_WALK = "DeskWalk"
    RUCKING = "Rucking"
    HIKE = "Hike"
    STEP_COUNT = "Step Count"
    DANCE = "Dance"
    CARDIO_DANCE = "CardioDance"
    KAYAK = "Kayaking"
    PADDLE_SPORTS = "PaddleSports"
    SAILING = "Sailing"
    ROWING = "Rowing"
    SURFING = "Surfing"
    SWIMMING = "Swimming"
    WATER_FITNESS = "WaterFitness"
    WATER_POLO = "WaterPolo"
    WATER_SPORTS = "WaterSports"
    CROSS_COUNTRY_SKIING = "CrossCountrySkiing"
    DOWNHILL_SKIING = "DownhillSkiing"
    SNOWBOARD = "Snowboard"
    SNOW_SPORTS = "SnowSports"
    SKATEBOARD = "Skateboarding"
    ROLLERSKATING = "Rollerskating"
    WHEELCHAIR_WALK = "Wheelchair Walk Pace"
    WHEELCHAIR_RUN = "Wheelchair Run Pace"
    TRADITIONAL_STRENGTH_TRAINING = "TraditionalStrengthTraining"
    FUNCTIONAL_STRENGTH_TRAINING = "FunctionalStrengthTraining"
    ADAPTIVE_STRENGTH_TRAINING = "AdaptiveStrengthTraining"
    CORE_TRAINING = "CoreTraining"
    STAIR_CLIMBING = "StairClimbing"
    ELLIPTICAL = "Elliptical"
    HIIT = "HIIT"
    JUMP_ROPE = "JumpRope"
    MIXED_CARDIO = "MixedCardio"
    CROSS_TRAINING = "CrossTraining"
    CLIMBING = "Climbing"
    BOXING = "Boxing"
    KICKBOXING = "Kickboxing"
    MARTIAL_ARTS = "MartialArts"
    WRESTLING = "Wrestling"
    TAI_CHI = "TaiChi"
    PILATES = "Pilates"
    YOGA = "Yoga"
    BARRE = "Barre"
    FLEXIBILITY = "Flexibility"
    GYMNASTICS = "Gymnastics"
    MIND_AND_BODY = "MindAndBody"
    COLD_PLUNGE = "ColdPlunge"
    COOLDOWN = "Cooldown"
    PREPARATION_AND_RECOVERY = "PreparationAndRecovery"
    BASKETBALL = "Basketball"
    BASEBALL = "Baseball"
    SOFTBALL = "Softball"
    SOCCER = "Soccer"
    AMERICAN_FOOTBALL = "AmericanFootball"
    AUSTRALIAN_FOOTBALL = "AustralianFootball"
    RUGBY = "Rugby"
    LACROSSE = "Lacrosse"
    HOCKEY = "Hockey"
    HANDBALL = "Handball"
    VOLLEYBALL = "Volleyball"
    CRICKET = "Cricket"
    TENNIS = "Tennis"
    TABLE_TENNIS = "TableTennis"
    BADMINTON = "Badminton"
    SQUASH = "Squash"
    RACQUETBALL = "Racquetball"
    PICKLEBALL = "Pickleball"
    GOLF = "Golf"
    DISC_SPORTS = "DiscSports"
    ARCHERY = "Archery"
    BOWLING = "Bowling"
    CURLING = "Curling"
    FENCING = "Fencing"
    EQUESTRIAN_SPORTS = "EquestrianSports"
    HUNTING = "Hunting"
    FISHING = "Fishing"
    PLAY = "Play"
    OTHER = "Other"
    UNKNOWN = "Unknown"

    @property
    def matching_types(self) -> tuple[ActivityType, ...]:
        """Types that count as the same kind of activity as this one.

        Only the run, ride and walk families group variants together;
        every other type matches just itself.
        """
        return _MATCHING_TYPES.get(self, (self,))

    def matches(self, other: ActivityType) -> bool:
        """Symmetric "same kind of activity" relation used for linkage."""
        return (
            self is other
            or other in self.matching_types
            or self in other.matching_types
        )

    @classmethod
    def parse(cls, value: str | None) -> ActivityType:
        """Map a stored value to a member, falling back to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown activity type %r, using Unknown", value)
            return cls.UNKNOWN


_MATCHING_TYPES: dict[ActivityType, tuple[ActivityType, ...]] = {
    ActivityType.RUN: (
        ActivityType.RUN,
        ActivityType.TREADMILL_RUN,
        ActivityType.DOG_RUN,
        ActivityType.STROLLER_RUN,
        ActivityType.TRAIL_RUN,
    ),
    ActivityType.BIKE_RIDE: (
        ActivityType.BIKE_RIDE,
        ActivityType.VIRTUAL_RIDE,
        ActivityType.EBIKE_RIDE,
        ActivityType.RECUMBENT_RIDE,
        ActivityType.COMMUTE_RIDE,
    ),
    ActivityType.WALK: (
        ActivityType.WALK,
        ActivityType.TREADMILL_WALK,
        ActivityType.STROLLER_WALK,
        ActivityType.DOG_WALK,
        ActivityType.HOT_GIRL_WALK,
        ActivityType.WALK_WITH_CANE,
        ActivityType.WALK_WITH_WALKER,
        ActivityType.WALKING_MEETING,
        ActivityType.RUCKING,
    ),
}


class WorkoutSource(str, Enum):
    """Originating app of a workout, keyed by its bundle identifier."""

    CADENCE = "com.cadence.app"
    STRAVA = "com.strava.stravaride"
    APPLE_HEALTH = "com.apple.health"
    NIKE_RUN_CLUB = "com.nike.nikeplus-gps"
    GARMIN_CONNECT = "com.garmin.connect.mobile"
    RUNKEEPER = "RunKeeperPro"
    PELOTON = "com.Peloton.PelotonApp"
    WAHOO_FITNESS = "com.WahooFitness.FisicaFitness"
    KOMOOT = "de.komoot.berlinbikeapp"

    @property
    def display_name(self) -> str:
        return _WORKOUT_SOURCE_NAMES[self]

    @property
    def vendor(self) -> str | None:
        """Integration that can be connected directly for this app, if any."""
        if self is WorkoutSource.GARMIN_CONNECT:
            return "garmin"
        if self is WorkoutSource.WAHOO_FITNESS:
            return "wahoo"
        return None

    @classmethod
    def from_bundle_id(cls, bundle_id: str | None) -> WorkoutSource | None:
        if not bundle_id:
            return None
        try:
            return cls(bundle_id)
        except ValueError:
            return None


_WORKOUT_SOURCE_NAMES: dict[WorkoutSource, str] = {
    WorkoutSource.CADENCE: "Cadence",
    WorkoutSource.STRAVA: "Strava",
    WorkoutSource.APPLE_HEALTH: "Apple Health",
    WorkoutSource.NIKE_RUN_CLUB: "Nike Run Club",
    WorkoutSource.GARMIN_CONNECT: "Garmin Connect",
    WorkoutSource.RUNKEEPER: "RunKeeper",
    WorkoutSource.PELOTON: "Peloton",
    WorkoutSource.WAHOO_FITNESS: "Wahoo Fitness",
    WorkoutSource.KOMOOT: "Komoot",
}


class SourceKind(str, Enum):
    """Which kind of provider produced a record."""

    HEALTH_STORE = "health_store"
    GARMIN = "garmin"
    WAHOO = "wahoo"
    OTHER = "other"


_VENDOR_KINDS = {SourceKind.GARMIN: "garmin", SourceKind.WAHOO: "wahoo"}


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityRecord:
    """Canonical activity / step-count record from any provider.

    Attributes:
        id:                 Provider-qualified id, ``"<provider>_<nativeId>"``.
        activity_type:      Canonical classification.
        start_date:         Absolute start time (source clock).
        end_date:           Absolute end time.
        start_date_local:   Wall-clock start at the activity location.
        end_date_local:     Wall-clock end at the activity location.
        distance_meters:    Distance covered.
        moving_time_seconds: Moving time.
        total_elevation_gain_meters: Elevation gain.
        active_calories:    Active energy burned.
        step_count:         Step total (step-count records, some walks).
        source_bundle_id:   Originating app bundle id, if known.
        source_kind:        Discriminant naming the producing provider kind.
        is_cached:          True when rebuilt from the cached snapshot.
    """

    id: str
    activity_type: ActivityType
    start_date: datetime
    end_date: datetime
    start_date_local: datetime
    end_date_local: datetime
    distance_meters: float = 0.0
    moving_time_seconds: float = 0.0
    total_elevation_gain_meters: float = 0.0
    active_calories: float = 0.0
    step_count: int | None = None
    source_bundle_id: str | None = None
    source_kind: SourceKind = SourceKind.OTHER
    is_cached: bool = False

    @property
    def provider(self) -> str:
        """Integration name recovered from the id prefix."""
        return self.id.split("_", 1)[0]

    @property
    def workout_source(self) -> WorkoutSource | None:
        return WorkoutSource.from_bundle_id(self.source_bundle_id)

    @property
    def is_step_count(self) -> bool:
        return self.activity_type is ActivityType.STEP_COUNT

    @property
    def vendor(self) -> str | None:
        """Name of the vendor integration that produced this record, if any.

        Resolved from the discriminant first, then from the id prefix (which
        survives cache round trips), then from the originating app.
        """
        if self.source_kind in _VENDOR_KINDS:
            return _VENDOR_KINDS[self.source_kind]
        if self.provider in _VENDOR_KINDS.values():
            return self.provider
        source = self.workout_source
        return source.vendor if source else None

    def as_cached(self) -> ActivityRecord:
        """Return a copy flagged as a cached snapshot."""
        return replace(self, is_cached=True)


# ---------------------------------------------------------------------------
# Provider adapter contract
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Abstract base class for all activity providers.

    Subclasses must implement:
        - is_authorized()
        - load()

    Optional overrides:
        - live_updates()      (default: a permanently empty stream)
        - load_step_counts()  (only called when SUPPORTS_STEP_COUNTS is set)
        - delete()            (default: ProviderError, deletion unsupported)
    """

    #: Unique provider name; also the id prefix of its records.
    NAME: str = "unknown"

    #: Discriminant stamped on the records this provider produces.
    SOURCE_KIND: SourceKind = SourceKind.OTHER

    #: Whether this provider also exposes the on-device daily step feed.
    SUPPORTS_STEP_COUNTS: bool = False

    @abstractmethod
    async def is_authorized(self) -> bool:
        """Return True if the user has connected this provider."""

    @abstractmethod
    async def load(self) -> list[ActivityRecord]:
        """Fetch every activity this provider knows about.

        Raises:
            ProviderError: On transport or authorization failure.
        """

    async def load_step_counts(self) -> list[ActivityRecord]:
        """Fetch daily step-count records.  Default: none."""
        return []

    async def live_updates(self) -> AsyncIterator[ActivityRecord]:
        """Yield newly observed records as they arrive.

        Providers without push support produce nothing and finish
        immediately.
        """
        return
        yield  # pragma: no cover

    async def delete(self, record: ActivityRecord) -> None:
        """Delete a record at the provider.

        Raises:
            ProviderError: If the provider does not support deletion.
        """
        raise ProviderError(self.NAME, "deletion is not supported")
