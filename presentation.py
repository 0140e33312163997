from collections import namedtuple
from datetime import datetime
from typing import Optional

from jinja2 import Environment

import config
from schemas import FEEDBACK_ISSUES, AnalysisResult, DetectedRegion, Feedback

HealthBand = namedtuple("HealthBand", ["label", "color"])

OPTIMAL = HealthBand("Optimal", "#10b981")
MONITORING = HealthBand("Monitoring", "#f59e0b")
CRITICAL = HealthBand("Critical", "#ef4444")


def health_band(score: int) -> HealthBand:
    if score > 70:
        return OPTIMAL
    if score > 40:
        return MONITORING
    return CRITICAL


def to_percent(value: float) -> float:
    """0-1000 normalized coordinate -> percent of the image side."""
    return value / 10


def region_overlay(region: DetectedRegion) -> dict:
    ymin, xmin, ymax, xmax = region.box_2d
    return {
        "top": to_percent(ymin),
        "left": to_percent(xmin),
        "width": to_percent(xmax - xmin),
        "height": to_percent(ymax - ymin),
        "label": region.label,
        "is_anomaly": region.is_anomaly,
        "confidence": region.confidence,
    }


def result_view(result: AnalysisResult, image_url: str, feedback: Optional[Feedback] = None) -> dict:
    band = health_band(result.health_score)
    given = feedback is not None and feedback.given
    return {
        "id": getattr(result, "id", None),
        "image_url": image_url,
        "stage": result.stage.value,
        "stage_match_pct": round(result.stage_conf * 100),
        "anomaly_status": "Detected" if result.is_anomaly else "Clear",
        "is_anomaly": result.is_anomaly,
        "risk_pct": round(result.anomaly_prob * 100),
        "health_score": result.health_score,
        "health_deficit": 100 - result.health_score,
        "band": band.label,
        "band_color": band.color,
        "description": result.description,
        "regions": [region_overlay(r) for r in result.detected_regions],
        "stage_conf": f"{result.stage_conf:.3f}",
        "anomaly_prob": f"{result.anomaly_prob:.3f}",
        "feedback_status": feedback.status.value if given else None,
        "feedback_issue": feedback.issue if given else None,
        "can_submit_feedback": getattr(result, "id", None) is not None and not given,
    }


def session_view(session) -> dict:
    """Read-only snapshot of a session, shaped for the page and /api/state."""
    current = None
    if session.current_result is not None and session.current_image_url:
        current = result_view(
            session.current_result,
            session.current_image_url,
            getattr(session.current_result, "feedback", None),
        )
    current_id = current["id"] if current else None
    return {
        "phase": session.phase.value,
        "is_reading": session.is_reading,
        "is_analyzing": session.is_analyzing,
        "busy": session.busy,
        "error": session.error,
        "preview_image_url": session.current_image_url if current is None else None,
        "result": current,
        "history": [
            {
                "id": item.id,
                "stage": item.stage.value,
                "time": datetime.fromtimestamp(item.timestamp / 1000).strftime("%H:%M:%S"),
                "timestamp": item.timestamp,
                "image_url": item.image_url,
                "health_score": item.health_score,
                "selected": item.id == current_id,
            }
            for item in session.history
        ],
        "feedback_issues": FEEDBACK_ISSUES,
        "model": config.GEMINI_MODEL,
    }


PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Cotton Growth Monitor</title>
<style>
  body { font-family: system-ui, sans-serif; background: #f0fdf4; color: #064e3b; margin: 0; }
  main { max-width: 1100px; margin: 0 auto; padding: 24px; }
  .card { background: #fff; border: 1px solid #d1fae5; border-radius: 16px; padding: 20px; margin-bottom: 20px; }
  .grid { display: grid; grid-template-columns: 7fr 5fr; gap: 20px; }
  .frame { position: relative; }
  .frame img { width: 100%; display: block; border-radius: 12px; }
  .box { position: absolute; border: 2px solid #34d399; background: rgba(52,211,153,.1); pointer-events: none; }
  .box.anomaly { border-color: #ef4444; background: rgba(239,68,68,.1); }
  .box span { position: absolute; top: -20px; left: 0; background: #10b981; color: #fff; font-size: 10px; padding: 1px 4px; white-space: nowrap; }
  .box.anomaly span { background: #ef4444; }
  .band { padding: 4px 12px; border-radius: 999px; color: #fff; font-weight: 700; font-size: 12px; }
  .error { background: #fef2f2; border: 1px solid #fecaca; color: #b91c1c; padding: 14px 20px; border-radius: 16px; margin-bottom: 20px; }
  .history { display: grid; grid-template-columns: repeat(auto-fill, minmax(140px, 1fr)); gap: 12px; }
  .history button { padding: 0; border: 2px solid #fff; border-radius: 12px; overflow: hidden; cursor: pointer; background: #fff; text-align: left; }
  .history button.selected { border-color: #10b981; }
  .history img { width: 100%; aspect-ratio: 1; object-fit: cover; display: block; }
  .history small { display: block; padding: 4px 6px; }
  .muted { color: #6b7280; font-size: 12px; text-transform: uppercase; letter-spacing: .05em; }
</style>
</head>
<body>
<main>
{% if view.phase == "idle" %}
  <section class="card" style="text-align:center">
    <h1>Monitor Your Cotton Crops with AI</h1>
    <p>Upload a clear photo of your cotton plant to detect growth stages, evaluate health scores, and identify pests or diseases.</p>
    <form action="/analyze" method="post" enctype="multipart/form-data">
      <input type="file" name="file" accept="image/*" required {% if view.busy %}disabled{% endif %}>
      <button type="submit" {% if view.busy %}disabled{% endif %}>Analyze Cotton Plant</button>
    </form>
  </section>
{% elif view.busy %}
  <section class="card" style="text-align:center">
    <h2>{% if view.is_reading %}Reading photo...{% else %}Analyzing Field Sample...{% endif %}</h2>
    {% if view.preview_image_url %}<img src="{{ view.preview_image_url }}" alt="Preview" style="max-width:320px;opacity:.5">{% endif %}
  </section>
{% else %}
  <div style="display:flex;justify-content:space-between;align-items:center;margin-bottom:16px">
    <form action="/reset" method="post"><button type="submit">&larr; New Analysis</button></form>
    <span class="muted">Generated by {{ view.model }}</span>
  </div>
  {% if view.error %}<div class="error">{{ view.error }}</div>{% endif %}
  {% set r = view.result %}
  {% if r %}
  <div class="grid">
    <section class="card">
      <div class="frame">
        <img src="{{ r.image_url }}" alt="Analyzed cotton plant">
        {% for box in r.regions %}
        <div class="box{% if box.is_anomaly %} anomaly{% endif %}" style="top:{{ box.top }}%;left:{{ box.left }}%;width:{{ box.width }}%;height:{{ box.height }}%">
          <span>{{ box.label }}{% if box.confidence is not none %} {{ (box.confidence * 100)|round|int }}%{% endif %}</span>
        </div>
        {% endfor %}
      </div>
    </section>
    <div>
      <section class="card">
        <div style="display:flex;justify-content:space-between;align-items:center">
          <h2>Health Score</h2>
          <span class="band" style="background:{{ r.band_color }}">{{ r.band }}</span>
        </div>
        <div style="font-size:40px;font-weight:900">{{ r.health_score }}</div>
        <div class="muted">Growth Stage &middot; {{ r.stage_match_pct }}% Match</div>
        <div style="font-size:18px;font-weight:700">{{ r.stage }}</div>
        <div class="muted" style="margin-top:12px">Anomaly Status &middot;
          <b style="color:{% if r.is_anomaly %}#dc2626{% else %}#059669{% endif %}">{{ r.anomaly_status }}</b></div>
        <div>Risk Level: <b>{{ r.risk_pct }}%</b></div>
      </section>
      <section class="card">
        <h2>AI Insights</h2>
        <p>{{ r.description }}</p>
        <div class="muted">Technical Summary</div>
        <div>Class Prob <b>{{ r.stage_conf }}</b> &middot; Anomaly Logit <b>{{ r.anomaly_prob }}</b></div>
      </section>
      <section class="card">
        <h2>Was this analysis accurate?</h2>
        {% if r.can_submit_feedback %}
        <form action="/feedback" method="post">
          <button type="submit" name="status" value="accurate">Accurate</button>
        </form>
        <form action="/feedback" method="post" style="margin-top:8px">
          <input type="hidden" name="status" value="incorrect">
          <select name="issue">
            {% for issue in view.feedback_issues %}<option value="{{ issue }}">{{ issue }}</option>{% endfor %}
          </select>
          <button type="submit">Report Issue</button>
        </form>
        {% elif r.feedback_status %}
        <p>Thanks for your feedback: <b>{{ r.feedback_status }}</b>{% if r.feedback_issue %} ({{ r.feedback_issue }}){% endif %}.</p>
        {% endif %}
      </section>
    </div>
  </div>
  {% endif %}
{% endif %}
{% if view.history and not view.busy %}
  <section class="card">
    <h3>Recent Field Logs</h3>
    <div class="history">
      {% for item in view.history %}
      <form action="/history/{{ item.id }}" method="post">
        <button type="submit" class="{% if item.selected %}selected{% endif %}">
          <img src="{{ item.image_url }}" alt="History">
          <small><b>{{ item.stage }}</b><br>{{ item.time }} &middot; {{ item.health_score }}</small>
        </button>
      </form>
      {% endfor %}
    </div>
  </section>
{% endif %}
</main>
</body>
</html>
"""

_env = Environment(autoescape=True)
_page = _env.from_string(PAGE_TEMPLATE)


def render_page(view: dict) -> str:
    return _page.render(view=view)
