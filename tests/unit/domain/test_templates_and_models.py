from __future__ import annotations

from datetime import datetime

import pytest

from photobatch.domain.models import (
    Job,
    JobStatus,
    Quality,
    Template,
    TemplateCategory,
    TemplateParams,
    parse_resolution,
)
from photobatch.domain.templates import BUILTIN_TEMPLATES, TemplateCatalog
from photobatch.exceptions import NotFoundError, ValidationError


def custom_template(template_id: str = "sepia", **params) -> Template:
    return Template(
        id=template_id,
        name="Sepia",
        prompt="sepia tone",
        category=TemplateCategory.ARTISTIC,
        params=TemplateParams(**params),
    )


def test_builtin_catalog_contents() -> None:
    catalog = TemplateCatalog()

    ids = {template.id for template in catalog.list_templates()}
    assert "ecommerce-white-bg" in ids
    assert "portrait-beautify" in ids
    assert len(ids) == len(BUILTIN_TEMPLATES)
    assert all(template.is_builtin for template in catalog.list_templates())
    with pytest.raises(NotFoundError):
        catalog.get("nope")


def test_register_and_remove_custom_template() -> None:
    catalog = TemplateCatalog()

    registered = catalog.register(custom_template(quality=Quality.FAST))

    assert catalog.exists("sepia")
    assert registered.is_builtin is False
    catalog.remove("sepia")
    assert not catalog.exists("sepia")


def test_builtin_templates_are_protected() -> None:
    catalog = TemplateCatalog()

    with pytest.raises(ValidationError):
        catalog.register(custom_template("ecommerce-white-bg"))
    with pytest.raises(ValidationError):
        catalog.remove("portrait-beautify")
    with pytest.raises(ValidationError):
        catalog.register(custom_template(resolution="huge"))


def test_parse_resolution() -> None:
    assert parse_resolution("1920x1080") == (1920, 1080)
    for bad in ("1920", "0x10", "axb"):
        with pytest.raises(ValueError):
            parse_resolution(bad)


def test_params_round_trip_ignores_unknown_keys() -> None:
    params = TemplateParams.from_dict({"strength": 0.3, "quality": "high", "seed": 42})

    assert params.quality is Quality.HIGH
    assert params.to_dict()["quality"] == "high"
    assert "seed" not in params.to_dict()


def test_reset_to_pending_clears_outcome() -> None:
    job = Job(id="j", image_id="img", template_id="t", status=JobStatus.FAILED, progress=40)
    job.error = "boom"
    job.started_at = job.completed_at = datetime(2026, 1, 1)

    job.reset_to_pending()

    assert job.status is JobStatus.PENDING
    assert job.progress == 0
    assert job.error is None
    assert job.started_at is None and job.completed_at is None
    assert not job.is_terminal
