from apps.poller.behaviors.base import SourceBehavior
from apps.poller.behaviors.discourse import DiscourseBehavior
from apps.poller.behaviors.generic import GenericBehavior
from apps.poller.behaviors.registry import BehaviorRegistry, build_default_registry

__all__ = [
    "BehaviorRegistry",
    "DiscourseBehavior",
    "GenericBehavior",
    "SourceBehavior",
    "build_default_registry",
]
