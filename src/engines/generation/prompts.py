from enum import Enum
from typing import Optional, Union

from src.modules.background.catalog import Catalog
from src.modules.background.models import BackgroundCategory, PromptPair


class PromptResolver:
    """
    Maps a background category, or a user's custom prompt, to a prompt pair.

    A custom prompt always borrows the negative text of the default (studio)
    template, whatever category is selected. Unknown categories fall back to
    the default template. Never raises.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def resolve(
        self,
        category: Union[BackgroundCategory, str, None],
        override: Optional[str] = None
    ) -> PromptPair:
        default = self.catalog.default_prompt

        if override and override.strip():
            return PromptPair(positive=override, negative=default.negative)

        template = default
        if category is not None:
            key = category.value if isinstance(category, Enum) else str(category).strip().lower()
            try:
                template = self.catalog.prompts.get(BackgroundCategory(key), default)
            except ValueError:
                template = default

        return PromptPair(positive=template.positive, negative=template.negative)
