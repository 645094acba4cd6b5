import copy
import json
from decimal import Decimal

import pydantic
import pytest

from src.modules.background.catalog import DEFAULT_CATALOG_DATA, Catalog, load_catalog
from src.modules.background.models import BackgroundCategory, BudgetTier, QualityTier


def test_builtin_catalog_values(catalog):
    assert catalog.model_cost("runware:102@1") == Decimal("0.05")
    assert catalog.model_cost("bfl:1@2") == Decimal("0.12")
    assert catalog.budget_limit(BudgetTier.LOW) == Decimal("0.03")
    assert catalog.budget_limit("medium") == Decimal("0.08")
    assert catalog.budget_limit("high") == Decimal("0.15")
    assert catalog.budget_limit("premium") == Decimal("0.25")
    assert catalog.default_prompt.category == BackgroundCategory.STUDIO
    assert set(catalog.prompts) == set(BackgroundCategory)


def test_builtin_profiles_within_ceilings(catalog):
    for tier in QualityTier:
        profile = catalog.param_profiles[tier]
        assert profile.steps <= 50
        assert profile.guidance_scale <= 15.0


def test_unknown_model_cost(catalog):
    with pytest.raises(KeyError):
        catalog.model_cost("acme:1@1")


def test_load_from_file(tmp_path):
    data = copy.deepcopy(DEFAULT_CATALOG_DATA)
    data["budget_limits"]["low"] = "0.05"
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(data))

    catalog = load_catalog(path)

    assert catalog.budget_limit("low") == Decimal("0.05")


def test_dangling_model_reference_rejected():
    data = copy.deepcopy(DEFAULT_CATALOG_DATA)
    data["premium_model_id"] = "acme:9@9"

    with pytest.raises(pydantic.ValidationError):
        Catalog.model_validate(data)


def test_missing_budget_tier_rejected():
    data = copy.deepcopy(DEFAULT_CATALOG_DATA)
    del data["budget_limits"]["premium"]

    with pytest.raises(pydantic.ValidationError):
        Catalog.model_validate(data)


def test_catalog_is_immutable(catalog):
    with pytest.raises(pydantic.ValidationError):
        catalog.primary_model_id = "bfl:1@2"


@pytest.mark.parametrize("limit", ["NaN", "Infinity", "-0.01"])
def test_invalid_budget_limit_rejected(limit):
    data = copy.deepcopy(DEFAULT_CATALOG_DATA)
    data["budget_limits"]["high"] = limit

    with pytest.raises(pydantic.ValidationError):
        Catalog.model_validate(data)


def test_nan_model_cost_rejected():
    data = copy.deepcopy(DEFAULT_CATALOG_DATA)
    data["models"]["bfl:1@2"]["unit_cost"] = "NaN"

    with pytest.raises(pydantic.ValidationError):
        Catalog.model_validate(data)
