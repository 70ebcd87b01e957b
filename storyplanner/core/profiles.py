"""Output profiles and the image style templates keyed by them."""

from enum import Enum


class OutputProfile(str, Enum):
    """Kind of recap video the storyboard is planned for."""

    NOVEL_EXPLANATION = "Novel Explanation"
    ANIME_RECAP = "Anime Recap"
    MANHWA_SUMMARY = "Manhwa Summary"


SHOT_STYLE_PROMPTS = {
    OutputProfile.NOVEL_EXPLANATION: (
        "digital art, semi-realistic, atmospheric lighting, detailed background, "
        "matte painting style, cinematic composition"
    ),
    OutputProfile.ANIME_RECAP: (
        "high quality anime style, makoto shinkai inspired, vibrant colors, clean lines, "
        "cel shaded, dramatic lighting"
    ),
    OutputProfile.MANHWA_SUMMARY: (
        "webtoon style, korean manhwa aesthetic, bold colors, sharp details, dynamic angle, "
        "highly polished"
    ),
}

PORTRAIT_STYLE_PROMPTS = {
    OutputProfile.NOVEL_EXPLANATION: (
        "digital art, character concept art, neutral background, detailed face, "
        "cinematic lighting, semi-realistic"
    ),
    OutputProfile.ANIME_RECAP: (
        "anime character sheet, white background, high quality, studio ghibli style, "
        "clean lines, cel shaded"
    ),
    OutputProfile.MANHWA_SUMMARY: (
        "webtoon character profile, high detailed, glowing lighting, korean manhwa style, "
        "dynamic pose"
    ),
}

# Aspect ratios accepted by the Gemini image config.
SUPPORTED_ASPECT_RATIOS = frozenset(
    {"1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"}
)
DEFAULT_ASPECT_RATIO = "16:9"
PORTRAIT_ASPECT_RATIO = "1:1"


def shot_style(profile: OutputProfile | str) -> str:
    return SHOT_STYLE_PROMPTS[OutputProfile(profile)]


def portrait_style(profile: OutputProfile | str) -> str:
    return PORTRAIT_STYLE_PROMPTS[OutputProfile(profile)]
