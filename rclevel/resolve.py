"""
Instance -> model resolution.

Instances name their model by numeric ID. Resolution builds one dict per
model list and does a single lookup per instance; a missing ID leaves the
instance unresolved (model is None) instead of failing the decode.
"""

import logging
from typing import Dict, Iterable, Optional, Sequence

from rclevel.errors import CorruptAssetError
from rclevel.models import StaticModel

logger = logging.getLogger(__name__)


class ModelIndex:
    """
    ID -> StaticModel lookup for one model category.

    Example:
        >>> index = ModelIndex(tie_models)
        >>> index.get(10)
        StaticModel(id=10, category=tie, vertices=24, indices=36)
    """

    def __init__(self, models: Iterable[StaticModel]):
        self._by_id: Dict[int, StaticModel] = {}
        for model in models:
            if model.id in self._by_id:
                raise CorruptAssetError(
                    f"Duplicate {model.category.value} model ID {model.id}",
                    {"model_id": model.id},
                )
            self._by_id[model.id] = model

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, model_id: int) -> bool:
        return model_id in self._by_id

    def get(self, model_id: int) -> Optional[StaticModel]:
        return self._by_id.get(model_id)


def resolve_instances(instances: Sequence, index: ModelIndex) -> int:
    """
    Attach each instance's model by ID.

    Args:
        instances: Instances with `model_id` and `model` attributes
        index: Lookup for the matching model category

    Returns:
        Number of instances left unresolved
    """
    unresolved = 0
    for instance in instances:
        instance.model = index.get(instance.model_id)
        if instance.model is None:
            unresolved += 1

    if unresolved:
        kind = instances[0].kind.value
        logger.warning("%d of %d %s instances reference unknown models", unresolved, len(instances), kind)
    return unresolved
