ANALYSIS_PROMPT = """
You are a specialized agricultural vision model for cotton plants (Gossypium hirsutum).
You receive one field photo of a cotton plant. Evaluate its growth stage and health.

Growth stages (use the exact label):
- "Phase 1: Seedling"          first true leaves appearing
- "Phase 2: Squaring"          small floral buds (squares) appearing
- "Phase 3: Bloom"             white/pink flowers visible
- "Phase 4: Boll Development"  green bolls or open white lint visible

Check for anomalies such as:
- Pests (aphids, bollworms, whitefly, jassids)
- Diseases (wilt, blight, leaf curl)
- Nutritional stress (yellowing leaves, reddening, stunted growth)

Fields:
- stage_conf: confidence of the stage classification, 0-1.
- is_anomaly: true if any pest, disease or stress indicator is visible.
- anomaly_prob: probability/severity of an anomaly being present, 0-1.
- health_score: integer 0-100, computed as
  round(100 * stage_conf * (1 - anomaly_prob)).
- description: a short, practical summary of the findings for a farmer.
- detected_regions: notable features (flowers, squares, bolls, pest clusters,
  lesions). box_2d is [ymin, xmin, ymax, xmax] normalized to 0-1000,
  with ymin < ymax and xmin < xmax. Set is_anomaly true for pests/disease/stress
  regions and give a confidence 0-1.

If the image does not clearly show a cotton plant, say so in the description
and keep stage_conf low.

Output only the JSON, no extra prose.
"""

STAGE_LABELS = [
    "Phase 1: Seedling",
    "Phase 2: Squaring",
    "Phase 3: Bloom",
    "Phase 4: Boll Development",
]

# Gemini structured-output schema (OpenAPI subset)
RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "stage": {
            "type": "STRING",
            "format": "enum",
            "enum": STAGE_LABELS,
            "description": "The current growth stage of the cotton plant.",
        },
        "stage_conf": {
            "type": "NUMBER",
            "description": "Confidence level of stage detection (0-1).",
        },
        "is_anomaly": {
            "type": "BOOLEAN",
            "description": "Whether a health anomaly is detected.",
        },
        "anomaly_prob": {
            "type": "NUMBER",
            "description": "Probability of an anomaly being present (0-1).",
        },
        "health_score": {
            "type": "INTEGER",
            "description": "Calculated health score (0-100).",
        },
        "description": {
            "type": "STRING",
            "description": "A detailed summary of the findings.",
        },
        "detected_regions": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "box_2d": {"type": "ARRAY", "items": {"type": "NUMBER"}},
                    "label": {"type": "STRING"},
                    "is_anomaly": {"type": "BOOLEAN"},
                    "confidence": {"type": "NUMBER"},
                },
                "required": ["box_2d", "label"],
            },
        },
    },
    "required": [
        "stage", "stage_conf", "is_anomaly", "anomaly_prob",
        "health_score", "description", "detected_regions",
    ],
}
