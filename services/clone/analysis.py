"""
Image Analysis - describes a captured image and derives a generation prompt.

The vision call goes through the Generation Service's image analysis
function, so whichever provider is assigned to ``imageAnalysis`` is used.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import GenerationFailedError

from ..multimedia.models import ImageAnalysisRequest
from ..multimedia.service import GenerationService

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """Please analyze this image in detail and provide a comprehensive description that could be used to generate a similar image. Include:
1. Main subject and composition
2. Color palette and dominant colors
3. Lighting conditions and mood
4. Artistic style and technique
5. Perspective and framing
6. Any text or specific details
7. Overall atmosphere and feeling

Provide the analysis in a structured format that can be used as a basis for image generation."""

# Section name -> keywords that mark the line introducing it
SECTION_KEYWORDS = {
    "subject": ("subject", "main subject", "主体"),
    "composition": ("composition", "构图"),
    "color_palette": ("color", "palette", "颜色", "调色板"),
    "lighting": ("lighting", "light", "光线", "照明"),
    "style": ("style", "artistic", "风格", "艺术"),
    "perspective": ("perspective", "framing", "视角", "框架"),
    "details": ("details", "text", "细节", "文字"),
}

SECTION_LABELS = {
    "composition": "Composition",
    "color_palette": "Color palette",
    "lighting": "Lighting",
    "style": "Style",
    "perspective": "Perspective",
    "details": "Details",
}

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 2000


@dataclass
class CapturedImage:
    """An externally captured image artifact (e.g. from the clipboard)."""
    data: bytes
    mime_type: str = "image/png"

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class AnalysisResult:
    raw_analysis: str
    subject: str = ""
    composition: str = ""
    color_palette: str = ""
    lighting: str = ""
    style: str = ""
    perspective: str = ""
    details: str = ""


def extract_section(text: str, keywords: tuple[str, ...], context_lines: int = 3) -> str:
    """First line mentioning any keyword, joined with the lines after it."""
    lines = text.split("\n")
    for index, line in enumerate(lines):
        lowered = line.lower()
        if any(keyword.lower() in lowered for keyword in keywords):
            return " ".join(lines[index:index + context_lines]).strip()
    return ""


def parse_analysis(analysis: str) -> AnalysisResult:
    sections = {name: extract_section(analysis, keywords) for name, keywords in SECTION_KEYWORDS.items()}
    return AnalysisResult(raw_analysis=analysis, **sections)


def build_prompt(result: AnalysisResult) -> str:
    """Assemble a prompt from the extracted sections, ending with a period."""
    parts = []
    if result.subject:
        parts.append(result.subject)
    for name, label in SECTION_LABELS.items():
        value = getattr(result, name)
        if value:
            parts.append(f"{label}: {value}")

    if not parts:
        return result.raw_analysis

    prompt = ". ".join(parts).strip()
    return prompt if prompt.endswith(".") else f"{prompt}."


class ImageAnalysisService:
    """
    Vision analysis and prompt derivation for the clone workflow.

    Usage:
        analysis_service = ImageAnalysisService(generation_service)
        analysis = await analysis_service.analyze_image(captured)
        prompt = await analysis_service.generate_prompt(analysis)
    """

    def __init__(self, service: GenerationService, model: Optional[str] = None):
        self.service = service
        self.model = model

    async def analyze_image(self, image: CapturedImage) -> str:
        logger.info(f"Analyzing captured image ({image.size} bytes, {image.mime_type})")
        response = await self.service.analyze_image(ImageAnalysisRequest(
            images=[image.to_data_uri()],
            prompt=ANALYSIS_PROMPT,
            model=self.model,
        ))

        text = response.data.text if response.data else None
        if not text or not text.strip():
            raise GenerationFailedError("No response from vision model")
        return text

    async def generate_prompt(self, analysis: str) -> str:
        return build_prompt(parse_analysis(analysis))

    async def validate_prompt(self, prompt: Optional[str]) -> bool:
        if not prompt or not prompt.strip():
            logger.warning("Prompt is empty")
            return False
        if len(prompt) < MIN_PROMPT_LENGTH:
            logger.warning("Prompt is too short")
            return False
        if len(prompt) > MAX_PROMPT_LENGTH:
            logger.warning("Prompt is too long")
            return False
        return True
