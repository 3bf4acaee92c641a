"""
sailsetu/flow/catalog.py

Purpose: Builds the feature registry used by every channel

Registration order is menu order; Link Chat Account comes first so
unidentified users see it at the top.
"""

from sailsetu.flow.registry import FeatureRegistry
from sailsetu.flow.features.access_review import AccessReviewFeature
from sailsetu.flow.features.leaver_cleanup import LeaverCleanupFeature
from sailsetu.flow.features.manage_access import ManageAccessFeature
from sailsetu.flow.features.system_status import SystemStatusFeature
from sailsetu.flow.features.verify_identity import VerifyIdentityFeature


def build_registry() -> FeatureRegistry:
    registry = FeatureRegistry()
    registry.register(VerifyIdentityFeature())
    registry.register(LeaverCleanupFeature())
    registry.register(ManageAccessFeature())
    registry.register(AccessReviewFeature())
    registry.register(SystemStatusFeature())
    return registry
