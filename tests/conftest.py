import io

import pytest
from PIL import Image

from schemas import AnalysisResult

# ---------------------------
# Typical model reply (bloom stage, aphids)
# ---------------------------
SAMPLE_RESPONSE = {
    "stage": "Phase 3: Bloom",
    "stage_conf": 0.92,
    "is_anomaly": True,
    "anomaly_prob": 0.35,
    "health_score": 60,
    "description": "Flowering cotton with an aphid cluster on the upper canopy.",
    "detected_regions": [
        {"box_2d": [100, 100, 400, 400], "label": "Aphid cluster", "is_anomaly": True, "confidence": 0.8},
    ],
}


class FakeAnalyzer:
    """Replays queued outcomes: an AnalysisResult is returned, an exception is raised."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def analyze(self, image):
        self.calls.append(image)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_png(width=64, height=48, color=(34, 139, 34)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_response():
    return {**SAMPLE_RESPONSE, "detected_regions": [dict(r) for r in SAMPLE_RESPONSE["detected_regions"]]}


@pytest.fixture
def sample_result(sample_response):
    return AnalysisResult.model_validate(sample_response)


@pytest.fixture
def png_bytes():
    return make_png()
