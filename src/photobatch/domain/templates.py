"""Built-in processing templates and the in-memory template catalog."""

from __future__ import annotations

import threading

from ..exceptions import NotFoundError, ValidationError
from .models import Quality, Template, TemplateCategory, TemplateParams, parse_resolution

BUILTIN_TEMPLATES: tuple[Template, ...] = (
    Template(
        id="ecommerce-white-bg",
        name="E-commerce white background",
        description="Replace the background with pure white for product listings.",
        category=TemplateCategory.PRODUCT,
        prompt=(
            "Remove background and replace with pure white background, keep product "
            "unchanged, professional product photography"
        ),
        negative_prompt="distorted, blurry, poor quality, artifacts",
        params=TemplateParams(
            strength=0.8, guidance_scale=7.5, steps=20, resolution="1024x1024", quality=Quality.BALANCED
        ),
        is_builtin=True,
    ),
    Template(
        id="portrait-beautify",
        name="Portrait beautify",
        description="Natural portrait retouching that keeps the face realistic.",
        category=TemplateCategory.PORTRAIT,
        prompt=(
            "Natural portrait enhancement, smooth skin, bright eyes, natural makeup, "
            "maintain facial features"
        ),
        negative_prompt="over-processed, artificial, plastic surgery, distorted features",
        params=TemplateParams(
            strength=0.6, guidance_scale=8.0, steps=25, resolution="1024x1024", quality=Quality.HIGH
        ),
        is_builtin=True,
    ),
    Template(
        id="document-scan",
        name="Document scan",
        description="Turn a photo of a page into a clean scan.",
        category=TemplateCategory.DOCUMENT,
        prompt=(
            "Convert to high-quality document scan, enhance text clarity, remove shadows, "
            "increase contrast"
        ),
        negative_prompt="blurry text, poor contrast, distorted, skewed",
        params=TemplateParams(
            strength=0.9, guidance_scale=7.0, steps=15, resolution="1920x1080", quality=Quality.HIGH
        ),
        is_builtin=True,
    ),
    Template(
        id="landscape-enhance",
        name="Landscape enhance",
        description="Boost colour and detail of landscape photos.",
        category=TemplateCategory.LANDSCAPE,
        prompt=(
            "Enhance landscape photo, vibrant colors, clear details, beautiful sky, "
            "professional photography"
        ),
        negative_prompt="over-saturated, artificial colors, HDR artifacts",
        params=TemplateParams(
            strength=0.7, guidance_scale=7.5, steps=20, resolution="1920x1080", quality=Quality.BALANCED
        ),
        is_builtin=True,
    ),
    Template(
        id="artistic-style",
        name="Artistic style",
        description="Render the photo as a painting-like artwork.",
        category=TemplateCategory.ARTISTIC,
        prompt=(
            "Convert to artistic style, painting-like, beautiful colors, artistic effect, "
            "creative interpretation"
        ),
        negative_prompt="realistic, photographic, literal",
        params=TemplateParams(
            strength=0.8, guidance_scale=8.5, steps=30, resolution="1024x1024", quality=Quality.HIGH
        ),
        is_builtin=True,
    ),
)


class TemplateCatalog:
    """Thread-safe registry of templates keyed by id."""

    def __init__(self, templates: tuple[Template, ...] | list[Template] = BUILTIN_TEMPLATES) -> None:
        self._lock = threading.Lock()
        self._templates: dict[str, Template] = {template.id: template for template in templates}

    def get(self, template_id: str) -> Template:
        with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"template '{template_id}' not found")
        return template

    def exists(self, template_id: str) -> bool:
        with self._lock:
            return template_id in self._templates

    def list_templates(self) -> list[Template]:
        with self._lock:
            return list(self._templates.values())

    def register(self, template: Template) -> Template:
        if not template.id or not template.prompt:
            raise ValidationError("template id and prompt are required")
        try:
            parse_resolution(template.params.resolution)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        with self._lock:
            existing = self._templates.get(template.id)
            if existing is not None and existing.is_builtin:
                raise ValidationError(f"built-in template '{template.id}' cannot be replaced")
            template.is_builtin = False
            self._templates[template.id] = template
        return template

    def remove(self, template_id: str) -> None:
        with self._lock:
            existing = self._templates.get(template_id)
            if existing is None:
                raise NotFoundError(f"template '{template_id}' not found")
            if existing.is_builtin:
                raise ValidationError(f"built-in template '{template_id}' cannot be removed")
            del self._templates[template_id]
