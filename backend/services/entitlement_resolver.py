"""Entitlement Resolver - computes a broker's capability set from plan and roles.

Capability set = plan features (each subject to its role gate, if any)
                 UNION features granted by every held role.

Resolution is deterministic for a given (plan, roles): the same inputs always
produce the same CapabilitySet. Missing or unknown plans raise
ConfigurationError; there is no default plan.
"""
import logging
from typing import Dict, FrozenSet, Iterable, Optional, Set, Tuple

from models import AppRole, AuditAction, CapabilitySet, PlanCode
from services.account_store import AccountStore
from services.errors import PermissionDeniedError, PlanViolationError, ValidationError
from services.plan_catalog import PlanCatalogService, plan_catalog as default_catalog
from services.role_store import RoleStore
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

KNOWN_ROLES = frozenset(r.value for r in AppRole)


class EntitlementResolver:
    """Capability resolution plus role administration."""

    def __init__(
        self,
        account_store: AccountStore,
        role_store: RoleStore,
        catalog: Optional[PlanCatalogService] = None,
        audit_db=None,
    ):
        self.account_store = account_store
        self.role_store = role_store
        self.catalog = catalog or default_catalog
        self.audit_db = audit_db

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve(self, account_id: str) -> CapabilitySet:
        """
        Resolve the capability set for an account.

        Raises:
            NotFoundError: unknown account
            ConfigurationError: missing or unknown plan
        """
        plan_str = await self.account_store.get_plan(account_id)
        roles = await self.role_store.get_roles(account_id)
        plan = self.catalog.resolve_plan_code(plan_str)
        return self.capabilities_for(account_id, plan, roles)

    def known_roles(self, account_id: str, roles: Iterable[str]) -> FrozenSet[str]:
        known = set()
        for role in roles:
            if role in KNOWN_ROLES:
                known.add(role)
            else:
                logger.warning("Ignoring unknown role tag %r for account %s", role, account_id)
        return frozenset(known)

    def capabilities_for(self, account_id: str, plan: PlanCode, roles: Iterable[str]) -> CapabilitySet:
        """Pure capability computation for a (plan, roles) pair."""
        held = self.known_roles(account_id, roles)

        features = {
            feature for feature in self.catalog.get_features(plan)
            if self.catalog.role_gate_satisfied(feature, held)
        }
        # Multiple roles: union of grants
        for role in held:
            features.update(
                feature for feature in self.catalog.get_role_features(role)
                if self.catalog.role_gate_satisfied(feature, held)
            )

        plan_def = self.catalog.get_plan(plan)
        return CapabilitySet(
            account_id=account_id,
            plan=plan,
            plan_name=plan_def["name"],
            roles=held,
            features=frozenset(features),
            limits=self.catalog.get_limits(plan),
        )

    def check_feature_access(
        self, capabilities: CapabilitySet, feature: str
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """(is_allowed, upgrade_message, upgrade_info) for a resolved capability set."""
        return self.catalog.check_feature_access(capabilities.plan, feature, capabilities.features)

    def require_feature(self, capabilities: CapabilitySet, feature: str) -> None:
        """Raise PlanViolationError when the capability set lacks a feature."""
        allowed, message, upgrade_info = self.check_feature_access(capabilities, feature)
        if allowed:
            return
        logger.info(
            "Feature denied: account=%s plan=%s feature=%s",
            capabilities.account_id, capabilities.plan.value, feature
        )
        raise PlanViolationError(
            message,
            feature=feature,
            current_plan=capabilities.plan.value,
            required_plan=(upgrade_info or {}).get("required_plan"),
            upgrade_info=upgrade_info,
        )

    # -------------------------------------------------------------------------
    # Role administration
    # -------------------------------------------------------------------------

    async def get_roles(self, account_id: str) -> Set[str]:
        await self.account_store.get_account(account_id)
        return await self.role_store.get_roles(account_id)

    async def _check_role_write(self, actor_id: str, account_id: str) -> None:
        actor_roles = await self.role_store.get_roles(actor_id)
        if AppRole.ADMIN.value not in actor_roles:
            logger.warning("Role change denied: actor=%s is not admin", actor_id)
            raise PermissionDeniedError(
                "Only administrators can change roles",
                {"required_role": AppRole.ADMIN.value},
            )
        await self.account_store.get_account(account_id)

    async def grant_role(self, actor_id: str, account_id: str, role: str) -> Set[str]:
        """Add a role tag. Granting a held role is a no-op success."""
        if role not in KNOWN_ROLES:
            raise ValidationError({"role": f"Unknown role: {role}"})
        await self._check_role_write(actor_id, account_id)
        created = await self.role_store.add_role(account_id, role)
        if created:
            await create_audit_log(
                self.audit_db,
                action=AuditAction.ROLE_GRANTED,
                actor_id=actor_id,
                corretor_id=account_id,
                resource_type="user_role",
                resource_id=account_id,
                metadata={"role": role},
            )
        return await self.role_store.get_roles(account_id)

    async def revoke_role(self, actor_id: str, account_id: str, role: str) -> Set[str]:
        """Remove a role tag. Revoking an absent role is a no-op success.

        Any stored tag can be revoked, including tags this version does not know.
        """
        await self._check_role_write(actor_id, account_id)
        removed = await self.role_store.remove_role(account_id, role)
        if removed:
            await create_audit_log(
                self.audit_db,
                action=AuditAction.ROLE_REVOKED,
                actor_id=actor_id,
                corretor_id=account_id,
                resource_type="user_role",
                resource_id=account_id,
                metadata={"role": role},
            )
        return await self.role_store.get_roles(account_id)
