import math
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, field_validator, model_validator


class GrowthStage(str, Enum):
    SEEDLING = "Phase 1: Seedling"
    SQUARING = "Phase 2: Squaring"
    BLOOM = "Phase 3: Bloom"
    BOLL_DEVELOPMENT = "Phase 4: Boll Development"

    @classmethod
    def _missing_(cls, value):
        # earlier prompt spelled it "Squareing"; also accept bare phase names
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("squareing", "squaring")
        for member in cls:
            full = member.value.lower()
            if key == full or key == full.split(":", 1)[1].strip():
                return member
        return None

    @property
    def order(self) -> int:
        return list(GrowthStage).index(self) + 1


class FeedbackStatus(str, Enum):
    NONE = "none"
    ACCURATE = "accurate"
    INCORRECT = "incorrect"


FEEDBACK_ISSUES = [
    "Wrong Growth Stage",
    "Missed Anomaly",
    "False Anomaly",
    "Inaccurate Regions",
    "Other",
]


class DetectedRegion(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    box_2d: Tuple[StrictFloat, StrictFloat, StrictFloat, StrictFloat] = Field(..., description="[ymin, xmin, ymax, xmax] on a 0-1000 scale")
    label: str = Field(..., min_length=1)
    is_anomaly: StrictBool = False
    confidence: Optional[float] = Field(None, ge=0, le=1, strict=True)

    @field_validator("box_2d")
    @classmethod
    def _check_box(cls, box):
        ymin, xmin, ymax, xmax = box
        if not (0 <= ymin < ymax <= 1000):
            raise ValueError(f"invalid y range: {ymin}..{ymax}")
        if not (0 <= xmin < xmax <= 1000):
            raise ValueError(f"invalid x range: {xmin}..{xmax}")
        return box


class AnalysisResult(BaseModel):
    """Structured reply of the vision model for one photo."""
    model_config = ConfigDict(str_strip_whitespace=True)

    stage: GrowthStage
    stage_conf: float = Field(..., ge=0, le=1, strict=True)
    is_anomaly: StrictBool
    anomaly_prob: float = Field(..., ge=0, le=1, strict=True)
    health_score: int = Field(..., ge=0, le=100, strict=True)
    description: str = Field(..., min_length=1)
    detected_regions: List[DetectedRegion]


def expected_health_score(stage_conf: float, anomaly_prob: float) -> int:
    """round(100 * stage_conf * (1 - anomaly_prob)), halves rounded up."""
    return int(math.floor(100 * stage_conf * (1 - anomaly_prob) + 0.5))


def health_score_drift(result: AnalysisResult) -> int:
    return abs(result.health_score - expected_health_score(result.stage_conf, result.anomaly_prob))


class Feedback(BaseModel):
    status: FeedbackStatus = FeedbackStatus.NONE
    issue: Optional[str] = None

    @model_validator(mode="after")
    def _issue_only_when_incorrect(self):
        if self.issue is not None:
            self.issue = self.issue.strip() or None
        if self.issue and self.status != FeedbackStatus.INCORRECT:
            raise ValueError("issue is only allowed when status is 'incorrect'")
        return self

    @property
    def given(self) -> bool:
        return self.status != FeedbackStatus.NONE


class FeedbackEvent(Feedback):
    """Message sent from the result view back to the owning session."""
    kind: Literal["feedback"] = "feedback"

    @field_validator("status")
    @classmethod
    def _not_none(cls, v):
        if v == FeedbackStatus.NONE:
            raise ValueError("feedback status must be 'accurate' or 'incorrect'")
        return v

    def to_feedback(self) -> Feedback:
        return Feedback(status=self.status, issue=self.issue)


class AnalysisHistoryItem(AnalysisResult):
    id: str
    timestamp: int  # epoch ms
    image_url: str
    feedback: Optional[Feedback] = None

    @classmethod
    def from_result(cls, result: AnalysisResult, item_id: str, timestamp: int, image_url: str):
        return cls(**result.model_dump(), id=item_id, timestamp=timestamp, image_url=image_url)
