"""Template catalog routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..domain.models import Quality, Template, TemplateCategory, TemplateParams
from ..domain.templates import TemplateCatalog
from ..exceptions import ValidationError
from .schemas import OperationResult, TemplateModel
from .state import get_catalog

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=list[TemplateModel])
async def list_templates(catalog: TemplateCatalog = Depends(get_catalog)) -> list[TemplateModel]:
    return [TemplateModel.from_template(template) for template in catalog.list_templates()]


@router.get("/{template_id}", response_model=TemplateModel)
async def read_template(template_id: str, catalog: TemplateCatalog = Depends(get_catalog)) -> TemplateModel:
    return TemplateModel.from_template(catalog.get(template_id))


@router.post("", response_model=TemplateModel, status_code=status.HTTP_201_CREATED)
async def register_template(
    payload: TemplateModel,
    catalog: TemplateCatalog = Depends(get_catalog),
) -> TemplateModel:
    try:
        template = Template(
            id=payload.id,
            name=payload.name,
            description=payload.description,
            category=TemplateCategory(payload.category),
            prompt=payload.prompt,
            negative_prompt=payload.negative_prompt,
            params=TemplateParams(
                strength=payload.params.strength,
                guidance_scale=payload.params.guidance_scale,
                steps=payload.params.steps,
                resolution=payload.params.resolution,
                quality=Quality(payload.params.quality),
            ),
        )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return TemplateModel.from_template(catalog.register(template))


@router.delete("/{template_id}", response_model=OperationResult)
async def remove_template(template_id: str, catalog: TemplateCatalog = Depends(get_catalog)) -> OperationResult:
    catalog.remove(template_id)
    return OperationResult(ok=True)
