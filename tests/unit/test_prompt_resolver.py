import pytest

from src.engines.generation.prompts import PromptResolver
from src.modules.background.models import BackgroundCategory


@pytest.fixture
def resolver(catalog):
    return PromptResolver(catalog)


@pytest.mark.parametrize("category", list(BackgroundCategory))
def test_each_category_resolves_to_its_template(resolver, catalog, category):
    pair = resolver.resolve(category)

    template = catalog.prompts[category]
    assert pair.positive == template.positive
    assert pair.negative == template.negative


def test_category_given_as_string(resolver, catalog):
    pair = resolver.resolve(" Office ")

    assert pair.positive == catalog.prompts[BackgroundCategory.OFFICE].positive


def test_override_wins_and_borrows_studio_negative(resolver, catalog):
    pair = resolver.resolve(BackgroundCategory.OUTDOOR, override="rustic wooden table, warm light")

    assert pair.positive == "rustic wooden table, warm light"
    assert pair.negative == catalog.prompts[BackgroundCategory.STUDIO].negative


def test_blank_override_is_ignored(resolver, catalog):
    pair = resolver.resolve("abstract", override="   ")

    assert pair.positive == catalog.prompts[BackgroundCategory.ABSTRACT].positive


@pytest.mark.parametrize("category", ["beach", "", None])
def test_unknown_category_falls_back_to_studio(resolver, catalog, category):
    pair = resolver.resolve(category)

    studio = catalog.prompts[BackgroundCategory.STUDIO]
    assert pair.positive == studio.positive
    assert pair.negative == studio.negative
