"""
Resource Policy Rules

Declarative, versioned rule sets gating actions on a resource type:

    {"id": "orders-v2", "type": "orders", "version": 2,
     "actions": {"edit": {"allOf": ["orders:write"], "anyOf": []}}}

A rule passes when every `allOf` code is held and, if `anyOf` is
non-empty, at least one `anyOf` code is held. Rules are evaluated
against a permission set produced by the permission evaluator.
"""

import json
import logging
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Optional, Union

import yaml

from ...data.models.authz import PolicyRule, ResourcePolicy
from .errors import FieldError, ValidationErrors
from .permissions import contains_permission, validate_permission_code

logger = logging.getLogger(__name__)


def evaluate_policy(policy: ResourcePolicy, action: str, user_permissions: Collection[str]) -> bool:
    """
    Decide whether `user_permissions` satisfy the rule for `action`.

    Unknown actions are denied. An empty allOf passes; an empty anyOf
    leaves the decision to allOf alone.
    """
    rule = policy.actions.get(action)
    if rule is None:
        return False

    if not _all_of_satisfied(rule.all_of, user_permissions):
        return False

    if not rule.any_of:
        return True

    return _any_of_satisfied(rule.any_of, user_permissions)


def _all_of_satisfied(required: Iterable[str], user_permissions: Collection[str]) -> bool:
    return all(contains_permission(user_permissions, p) for p in required)


def _any_of_satisfied(options: Iterable[str], user_permissions: Collection[str]) -> bool:
    return any(contains_permission(user_permissions, p) for p in options)


def find_policy(policies: Iterable[ResourcePolicy], resource_type: str) -> Optional[ResourcePolicy]:
    """First policy for the type, in input order"""
    for policy in policies:
        if policy.type == resource_type:
            return policy
    return None


def get_latest_policy_version(
    policies: Iterable[ResourcePolicy],
    resource_type: str,
) -> Optional[ResourcePolicy]:
    """
    Authoritative policy for a type: highest version, then smallest id.

    The id tie-break keeps the result independent of input order.
    """
    candidates = [p for p in policies if p.type == resource_type]
    if not candidates:
        return None
    return min(candidates, key=lambda p: (-p.version, p.id))


def evaluate_resource_access(
    policies: Iterable[ResourcePolicy],
    resource_type: str,
    action: str,
    user_permissions: Collection[str],
) -> bool:
    """Evaluate the latest policy for the type; no policy means deny."""
    policy = get_latest_policy_version(policies, resource_type)
    if policy is None:
        logger.debug(f"No policy for resource type '{resource_type}', denying {action}")
        return False
    return evaluate_policy(policy, action, user_permissions)


def merge_policies(
    base_policies: Iterable[ResourcePolicy],
    override_policies: Iterable[ResourcePolicy],
) -> List[ResourcePolicy]:
    """
    Merge two policy sets keyed by type.

    An override replaces the base entry when its version is greater than
    or equal to the base version. Result is ordered by type.
    """
    merged: Dict[str, ResourcePolicy] = {}

    for policy in base_policies:
        existing = merged.get(policy.type)
        if existing is None or get_latest_policy_version([existing, policy], policy.type) is policy:
            merged[policy.type] = policy

    for policy in override_policies:
        existing = merged.get(policy.type)
        if existing is None or policy.version >= existing.version:
            merged[policy.type] = policy

    return [merged[t] for t in sorted(merged)]


# =========================================================================
# VALIDATION (authoring time)
# =========================================================================

def validate_policy(policy: ResourcePolicy) -> ValidationErrors:
    errors = ValidationErrors()

    if not policy.id:
        errors.append(FieldError("id", "required", "Policy ID is required"))

    if not policy.type:
        errors.append(FieldError("type", "required", "Policy type is required"))

    if policy.version < 1:
        errors.append(FieldError("version", "invalid_value", "Policy version must be greater than 0"))

    if not policy.actions:
        errors.append(FieldError("actions", "required", "Policy must define at least one action"))

    for action_name in sorted(policy.actions):
        if not action_name:
            errors.append(FieldError("actions", "empty_action_name", "Action name cannot be empty"))
            continue
        errors.extend(validate_policy_rule(policy.actions[action_name], f"actions.{action_name}"))

    return errors


def validate_policy_rule(rule: PolicyRule, field_prefix: str = "rule") -> ValidationErrors:
    errors = ValidationErrors()

    if not rule.all_of and not rule.any_of:
        errors.append(FieldError(
            field_prefix,
            "empty_rule",
            "Policy rule must define at least one permission in allOf or anyOf",
        ))

    for list_name, codes in (("allOf", rule.all_of), ("anyOf", rule.any_of)):
        for i, permission in enumerate(codes):
            errors.extend(validate_permission_code(permission, f"{field_prefix}.{list_name}[{i}]"))

    return errors


# =========================================================================
# INTROSPECTION
# =========================================================================

def get_policy_actions(policy: ResourcePolicy) -> List[str]:
    return sorted(policy.actions)


def policy_supports_action(policy: ResourcePolicy, action: str) -> bool:
    return action in policy.actions


def _dedupe(codes: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(codes))


def get_required_permissions(policy: ResourcePolicy, action: str) -> List[str]:
    """Codes mentioned by the action's rule (allOf first), deduplicated"""
    rule = policy.actions.get(action)
    if rule is None:
        return []
    return _dedupe([*rule.all_of, *rule.any_of])


def get_all_policy_permissions(policy: ResourcePolicy) -> List[str]:
    codes: List[str] = []
    for action in get_policy_actions(policy):
        rule = policy.actions[action]
        codes.extend(rule.all_of)
        codes.extend(rule.any_of)
    return _dedupe(codes)


# =========================================================================
# LOADING
# =========================================================================

def load_policies(path: Union[str, Path]) -> List[ResourcePolicy]:
    """
    Load policy documents from a YAML or JSON file.

    The file holds either a list of policies or a mapping with a
    "policies" list.

    Raises:
        FileNotFoundError: If the file doesn't exist
        pydantic.ValidationError: If a document has the wrong shape
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, "r") as f:
        if path.suffix == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)

    if raw is None:
        raw = []
    if isinstance(raw, dict):
        raw = raw.get("policies", [])

    policies = [ResourcePolicy.model_validate(doc) for doc in raw]
    logger.info(f"Loaded {len(policies)} resource policies from {path}")
    return policies
