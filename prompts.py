from __future__ import annotations

from typing import Callable, Dict


INITIAL_PROMPT = """
GOAL: Create a visual variation of the 'Base Image' (the first image) by applying the lighting and the atmosphere (mood) of the 'Reference Image' (the second image). The result must blend what is analyzed in the Base Image with what is analyzed in the Reference Image.

BASE IMAGE ANALYSIS:
- Architectural geometry and composition.
- Surface finishes and materials (textures, reflections).
- Frame proportions (aspect ratio) and camera framing.

REFERENCE IMAGE ANALYSIS:
- Overall lighting and atmosphere (mood).
- Colors, color temperature and global illumination (GI).
- Direction, color and softness of shadows.
- Contrast, intensity of whites and blacks.
- Vegetation tone.
- Fog level.
- Sky colors and composition.
- Intensity and color of reflections.

STRICT RULES (DO NOT VIOLATE):
1. RIGOROUSLY PRESERVE the geometry, modeling, physical elements, framing and camera angle of the 'Base Image'. NO structural change is allowed.
2. KEEP THE ASPECT RATIO of the 'Base Image' exactly.
3. The only focus of the change is LIGHTING and ATMOSPHERE. Alter the materials of the 'Base Image' only when strictly necessary to keep the new lighting coherent (e.g. a day scene turned into a night scene).
4. COMPLETELY IGNORE foreground vegetation when the Reference Image has any. Foreground framing elements must stay faithful to the Base Image.
5. The final result must have high-quality photorealism, suitable for a professional ArchViz presentation.
"""

REVARIATION_PROMPT = """
GOAL: Using the 'Base Image' (the first image, an already generated variation) and the original 'Reference Image' (the second image), generate a new alternative close to the 'Base Image', with small and subtle variations in color and light intensity only. Keep the overall atmosphere of the 'Reference Image'.

STRICT RULES (DO NOT VIOLATE):
1. RIGOROUSLY PRESERVE the geometry, modeling, physical elements, framing and camera angle of the 'Base Image'.
2. KEEP THE ASPECT RATIO of the 'Base Image' exactly.
3. COMPLETELY IGNORE foreground vegetation when the Reference Image has any. Foreground framing elements must stay faithful to the Base Image.
4. The final result must have high-quality photorealism.
"""


def initial_prompt() -> str:
    """Instruction for the first batch: reference mood onto the base image."""
    return INITIAL_PROMPT


def revariation_prompt() -> str:
    """Instruction for a subtle variant of an already generated image."""
    return REVARIATION_PROMPT


PROMPTS: Dict[str, Callable[[], str]] = {
    "initial": initial_prompt,
    "revariation": revariation_prompt,
}
