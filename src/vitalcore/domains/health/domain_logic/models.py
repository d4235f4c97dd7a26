"""Reading types, analysis result types and domain constants for the wellness core."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class MetricRisk(str, Enum):
    """Ordinal health implication of a metric."""

    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"


class TrendDirection(str, Enum):
    """Direction of a metric's multi-week slope (sleep polarity inverted)."""

    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"


# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Metric keys used in every result map. "bp" trends on the systolic series.
TREND_METRICS = ["bp", "pulse", "glucose", "sleep", "weight"]

# Retrain / cache interval for trend and correlation caches
RETRAIN_INTERVAL_SECONDS = 86400

STATUS_HEALTHY = "Healthy"
STATUS_NEEDS_ATTENTION = "Needs Attention"
STATUS_AT_RISK = "At Risk"


# ---------------------------------------------------------------------------
# Readings (immutable; owned by the external reading store)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BloodPressureReading:
    systolic: int
    diastolic: int
    timestamp: datetime


@dataclass(frozen=True)
class PulseReading:
    bpm: int
    timestamp: datetime


@dataclass(frozen=True)
class GlucoseReading:
    mg_dl: float
    timestamp: datetime


@dataclass(frozen=True)
class SleepReading:
    hours: float
    timestamp: datetime


@dataclass(frozen=True)
class WeightReading:
    kg: float
    timestamp: datetime


@dataclass(frozen=True)
class HeightReading:
    cm: float
    timestamp: datetime


@dataclass(frozen=True)
class HealthReadings:
    """Read-only snapshot of every reading handed to one analysis call.

    Each collection is expected in time order (oldest first), which is how the
    reading store returns them. Lists passed in are converted to tuples.
    """

    blood_pressure: tuple[BloodPressureReading, ...] = ()
    pulse: tuple[PulseReading, ...] = ()
    glucose: tuple[GlucoseReading, ...] = ()
    sleep: tuple[SleepReading, ...] = ()
    weight: tuple[WeightReading, ...] = ()
    height: tuple[HeightReading, ...] = ()

    def __post_init__(self) -> None:
        for name in ("blood_pressure", "pulse", "glucose", "sleep", "weight", "height"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def counts(self) -> dict[str, int]:
        """Number of readings per collection."""
        return {
            "blood_pressure": len(self.blood_pressure),
            "pulse": len(self.pulse),
            "glucose": len(self.glucose),
            "sleep": len(self.sleep),
            "weight": len(self.weight),
            "height": len(self.height),
        }

    def total_excluding_height(self) -> int:
        return (
            len(self.blood_pressure)
            + len(self.pulse)
            + len(self.glucose)
            + len(self.sleep)
            + len(self.weight)
        )

    def trend_series(self) -> dict[str, list[tuple[float, datetime]]]:
        """(value, timestamp) series per trend metric key."""
        return {
            "bp": [(float(r.systolic), r.timestamp) for r in self.blood_pressure],
            "pulse": [(float(r.bpm), r.timestamp) for r in self.pulse],
            "glucose": [(r.mg_dl, r.timestamp) for r in self.glucose],
            "sleep": [(r.hours, r.timestamp) for r in self.sleep],
            "weight": [(r.kg, r.timestamp) for r in self.weight],
        }


# ---------------------------------------------------------------------------
# Analysis outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HealthProjection:
    """Future values of one metric read off its fitted trend line."""

    metric: str
    current_avg: float
    one_week: float
    one_month: float
    three_months: float


@dataclass(frozen=True)
class TrendResult:
    direction: TrendDirection
    slope_per_day: float
    message: str
    projection: HealthProjection | None = None


@dataclass(frozen=True)
class CorrelationAlert:
    metrics: tuple[str, str]
    description: str
    severity: MetricRisk

    def to_payload(self) -> dict[str, Any]:
        return {
            "metrics": list(self.metrics),
            "description": self.description,
            "severity": self.severity.value,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CorrelationAlert:
        first, second = payload["metrics"]
        return cls(
            metrics=(first, second),
            description=payload["description"],
            severity=MetricRisk(payload["severity"]),
        )


@dataclass(frozen=True)
class MetricAnalysis:
    risk: MetricRisk
    trend: TrendDirection | None
    recent_avg: float | None
    message: str


@dataclass(frozen=True)
class ProjectedScores:
    one_week: int
    one_month: int
    three_months: int


@dataclass(frozen=True)
class AnalysisResult:
    """Root result of one ``analyze()`` call. Never mutated after return."""

    score: int
    status: str
    metric_analyses: dict[str, MetricAnalysis]
    correlation_alerts: list[CorrelationAlert]
    data_insufficiency_message: str | None
    projections: dict[str, HealthProjection]
    projected_scores: ProjectedScores | None
    log: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for transports."""
        return {
            "score": self.score,
            "status": self.status,
            "metric_analyses": {
                key: {
                    "risk": analysis.risk.value,
                    "trend": analysis.trend.value if analysis.trend else None,
                    "recent_avg": analysis.recent_avg,
                    "message": analysis.message,
                }
                for key, analysis in self.metric_analyses.items()
            },
            "correlation_alerts": [a.to_payload() for a in self.correlation_alerts],
            "data_insufficiency_message": self.data_insufficiency_message,
            "projections": {key: asdict(p) for key, p in self.projections.items()},
            "projected_scores": (
                asdict(self.projected_scores) if self.projected_scores else None
            ),
            "log": list(self.log),
            "timestamp": self.timestamp.isoformat(),
        }
