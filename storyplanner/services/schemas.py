"""Response schemas handed to Gemini structured output (OpenAPI subset)."""

from storyplanner.models import ShotType

REFERENCE_SHEET_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "characters": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "physical_description": {
                        "type": "STRING",
                        "description": "Detailed visual description for Image Generation AI",
                    },
                },
                "required": ["name", "physical_description"],
            },
        },
        "locations": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "visual_description": {"type": "STRING"},
                },
                "required": ["name", "visual_description"],
            },
        },
        "art_style_guide": {"type": "STRING"},
    },
    "required": ["summary", "characters", "locations", "art_style_guide"],
}

VISUAL_PLAN_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "chapter_mood": {
            "type": "OBJECT",
            "properties": {
                "tone": {"type": "STRING"},
                "palette_hint": {"type": "STRING"},
            },
            "required": ["tone", "palette_hint"],
        },
        "characters": {
            "type": "ARRAY",
            "description": "List of characters present IN THIS CHAPTER with their visual descriptions.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "physical_description": {"type": "STRING"},
                },
                "required": ["name", "physical_description"],
            },
        },
        "emotion_arc": {
            "type": "ARRAY",
            "description": "A chronological list of emotional beats (minimum 6 points) representing the flow of the chapter.",
            "minItems": 6,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "beat_description": {
                        "type": "STRING",
                        "description": "Short label for this moment (e.g., 'The Argument')",
                    },
                    "emotion_label": {
                        "type": "STRING",
                        "description": "One word emotion (e.g. Tension, Fear, Joy)",
                    },
                    "intensity": {"type": "NUMBER", "description": "1 to 10"},
                    "color_hex": {
                        "type": "STRING",
                        "description": "Color code representing the emotion (e.g. #FF0000 for danger)",
                    },
                },
                "required": ["beat_description", "emotion_label", "intensity", "color_hex"],
            },
        },
        "visuals": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "type": {"type": "STRING", "enum": [shot_type.value for shot_type in ShotType]},
                    "description": {"type": "STRING"},
                    "reuse": {"type": "BOOLEAN"},
                },
                "required": ["type", "description"],
            },
        },
    },
    "required": ["chapter_mood", "characters", "emotion_arc", "visuals"],
}

REFINED_SHOT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "type": {"type": "STRING"},
        "description": {"type": "STRING"},
    },
    "required": ["type", "description"],
}
