"""
Landing Page API Routes
Broker editor endpoints (token required) and the public landing render.
"""
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends
import logging

from middleware import require_account, get_config_resolver, get_entitlement_resolver
from models import CapabilitySet, PlanFamily, ResolvedLandingConfig
from services.config_resolver import ConfigResolver
from services.entitlement_resolver import EntitlementResolver
from services.errors import ConfigurationError
from services.plan_catalog import plan_catalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/landing", tags=["landing"])
public_router = APIRouter(prefix="/api/public/landing", tags=["public"])


def capabilities_payload(capabilities: CapabilitySet) -> Dict[str, Any]:
    features = sorted(capabilities.features)
    return {
        "account_id": capabilities.account_id,
        "plan": capabilities.plan.value,
        "plan_name": capabilities.plan_name,
        "roles": sorted(capabilities.roles),
        "features": features,
        "feature_names": {
            f: (plan_catalog.get_feature_metadata(f) or {}).get("name", f) for f in features
        },
        "limits": capabilities.limits.model_dump(),
    }


def config_payload(resolved: ResolvedLandingConfig) -> Dict[str, Any]:
    data = resolved.model_dump(mode="json", exclude={"capabilities"})
    data["capabilities"] = (
        capabilities_payload(resolved.capabilities) if resolved.capabilities is not None else None
    )
    return data


# ============================================
# Broker Editor
# ============================================

@router.get("/config")
async def get_landing_config(
    account_id: str = Depends(require_account),
    resolver: ConfigResolver = Depends(get_config_resolver),
):
    """Resolved landing configuration for the editor."""
    resolved = await resolver.resolve(account_id)
    return config_payload(resolved)


@router.put("/config")
async def save_landing_config(
    update: Dict[str, Any] = Body(...),
    account_id: str = Depends(require_account),
    resolver: ConfigResolver = Depends(get_config_resolver),
):
    """Partial save. Only fields present in the body change."""
    await resolver.save(account_id, update, actor_id=account_id)
    resolved = await resolver.resolve(account_id)
    return {"success": True, "config": config_payload(resolved)}


@router.get("/capabilities")
async def get_capabilities(
    account_id: str = Depends(require_account),
    entitlements: EntitlementResolver = Depends(get_entitlement_resolver),
):
    capabilities = await entitlements.resolve(account_id)
    return capabilities_payload(capabilities)


@router.get("/templates")
async def get_template_gallery(
    account_id: str = Depends(require_account),
    resolver: ConfigResolver = Depends(get_config_resolver),
):
    """Template gallery with lock state and upgrade target per template."""
    templates = await resolver.list_templates_for(account_id)
    return {"templates": templates, "total": len(templates)}


@router.get("/plans")
async def get_plans(
    account_id: str = Depends(require_account),
    entitlements: EntitlementResolver = Depends(get_entitlement_resolver),
):
    """Plan comparison for the upgrade screen: plans by family plus the feature matrix."""
    try:
        current_plan = (await entitlements.resolve(account_id)).plan.value
    except ConfigurationError as e:
        logger.warning("Plan listing for %s without a current plan: %s", account_id, e.message)
        current_plan = None

    plans = {plan["code"]: plan for plan in plan_catalog.get_all_plans()}
    families = {
        family.value: [plans[code.value] for code in plan_catalog.plans_in_family(family)]
        for family in PlanFamily
    }
    return {
        "current_plan": current_plan,
        "families": families,
        "matrix": plan_catalog.get_entitlement_matrix(),
    }


# ============================================
# Public Render
# ============================================

@public_router.get("/{account_id}")
async def get_public_landing(
    account_id: str,
    resolver: ConfigResolver = Depends(get_config_resolver),
):
    """Public landing page data. Falls back to a minimal page instead of failing."""
    resolved = await resolver.resolve_public(account_id)
    return config_payload(resolved)
