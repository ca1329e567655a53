"""Plan Catalog - Single Source of Truth for broker plan definitions.

This is the AUTHORITATIVE source for:
- Plan codes, families and tiers
- Landing page / template limits
- Display pricing (informational only, never used for billing)
- Feature entitlements per plan
- Role-granted administrative features

NON-NEGOTIABLE RULES:
1. Unknown plan codes fail with ConfigurationError - never default to a plan
2. Plans never mutate at runtime; a plan change reassigns the code on the broker
3. Administrative features come from roles, not from plans

Plan Structure:
- Lobby (assinatura): setup fee + monthly     -> start / pro / authority
- Partner (parceria): monthly + sales commission -> start / pro / authority
"""
from typing import Dict, List, Optional, Tuple, Any, Iterable, FrozenSet
from models import PlanCode, PlanFamily, PlanTier, AppRole, PlanLimits
from services.errors import ConfigurationError
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# PLAN DEFINITIONS - Complete plan configuration
# ============================================================================
PLAN_DEFINITIONS = {
    PlanCode.LOBBY_START: {
        "code": "lobby_start",
        "name": "Lobby Start",
        "family": PlanFamily.LOBBY,
        "tier": PlanTier.START,
        "monthly_price": 700.00,
        "setup_fee": 1000.00,
        "commission_percent": None,
        "currency": "BRL",
        "max_landing_pages": 1,
        "max_templates": 1,
        "is_recommended": False,
    },
    PlanCode.LOBBY_PRO: {
        "code": "lobby_pro",
        "name": "Lobby Pro",
        "family": PlanFamily.LOBBY,
        "tier": PlanTier.PRO,
        "monthly_price": 1000.00,
        "setup_fee": 2200.00,
        "commission_percent": None,
        "currency": "BRL",
        "max_landing_pages": 4,
        "max_templates": 2,
        "is_recommended": True,
    },
    PlanCode.LOBBY_AUTHORITY: {
        "code": "lobby_authority",
        "name": "Lobby Authority",
        "family": PlanFamily.LOBBY,
        "tier": PlanTier.AUTHORITY,
        "monthly_price": 2200.00,
        "setup_fee": 3500.00,
        "commission_percent": None,
        "currency": "BRL",
        "max_landing_pages": 10,
        "max_templates": 3,
        "is_recommended": False,
    },
    PlanCode.PARTNER_START: {
        "code": "partner_start",
        "name": "Partner Start",
        "family": PlanFamily.PARTNER,
        "tier": PlanTier.START,
        "monthly_price": 500.00,
        "setup_fee": None,
        "commission_percent": 20,
        "currency": "BRL",
        "max_landing_pages": 1,
        "max_templates": 1,
        "is_recommended": False,
    },
    PlanCode.PARTNER_PRO: {
        "code": "partner_pro",
        "name": "Partner Pro",
        "family": PlanFamily.PARTNER,
        "tier": PlanTier.PRO,
        "monthly_price": 900.00,
        "setup_fee": None,
        "commission_percent": 40,
        "currency": "BRL",
        "max_landing_pages": 4,
        "max_templates": 2,
        "is_recommended": True,
    },
    PlanCode.PARTNER_AUTHORITY: {
        "code": "partner_authority",
        "name": "Partner Authority",
        "family": PlanFamily.PARTNER,
        "tier": PlanTier.AUTHORITY,
        "monthly_price": 1500.00,
        "setup_fee": None,
        "commission_percent": 50,
        "currency": "BRL",
        "max_landing_pages": 10,
        "max_templates": 3,
        "is_recommended": False,
    },
}


# ============================================================================
# FEATURE LISTS - Ordered features each plan gets
# ============================================================================
PLAN_FEATURES = {
    PlanCode.LOBBY_START: [
        "landing_page",
        "lead_tracking",
    ],
    PlanCode.LOBBY_PRO: [
        "landing_page",
        "lead_tracking",
        "custom_landing_pages",
        "crm_integrated",
        "traffic_management",
        "edit_headline",
    ],
    PlanCode.LOBBY_AUTHORITY: [
        "landing_page",
        "lead_tracking",
        "custom_landing_pages",
        "crm_integrated",
        "traffic_management",
        "edit_headline",
        "custom_badges",
        "video_production",
        "full_automation",
    ],
    PlanCode.PARTNER_START: [
        "landing_page",
        "lead_tracking",
    ],
    PlanCode.PARTNER_PRO: [
        "landing_page",
        "lead_tracking",
        "custom_landing_pages",
        "crm_integrated",
    ],
    PlanCode.PARTNER_AUTHORITY: [
        "landing_page",
        "lead_tracking",
        "custom_landing_pages",
        "crm_integrated",
        "video_production",
    ],
}


# ============================================================================
# ROLE GRANTS - Administrative features, independent of plan
# ============================================================================
ROLE_FEATURES = {
    AppRole.ADMIN: ["manage_roles", "manage_brokers", "manage_templates", "view_all_leads"],
    AppRole.MODERATOR: ["manage_brokers", "manage_templates", "view_all_leads"],
    AppRole.CORRETOR: [],
    AppRole.USER: [],
}

# Feature -> roles that must be held for the feature to be present
FEATURE_ROLE_GATES = {
    "crm_integrated": frozenset({AppRole.CORRETOR.value, AppRole.ADMIN.value, AppRole.MODERATOR.value}),
    "manage_roles": frozenset({AppRole.ADMIN.value}),
    "manage_brokers": frozenset({AppRole.ADMIN.value, AppRole.MODERATOR.value}),
    "manage_templates": frozenset({AppRole.ADMIN.value, AppRole.MODERATOR.value}),
    "view_all_leads": frozenset({AppRole.ADMIN.value, AppRole.MODERATOR.value}),
}


# ============================================================================
# FEATURE METADATA - Human-readable feature info
# ============================================================================
FEATURE_METADATA = {
    "landing_page": {"name": "Landing page padrão", "category": "landing"},
    "lead_tracking": {"name": "Rastreamento de leads", "category": "leads"},
    "custom_landing_pages": {"name": "Landing pages personalizadas", "category": "landing"},
    "crm_integrated": {"name": "CRM integrado", "category": "leads"},
    "traffic_management": {"name": "Gestão de tráfego", "category": "marketing"},
    "edit_headline": {"name": "Headline e subtítulo personalizados", "category": "landing"},
    "custom_badges": {"name": "Selos personalizados", "category": "landing"},
    "video_production": {"name": "Produção de vídeos", "category": "marketing"},
    "full_automation": {"name": "Automação completa", "category": "marketing"},
    "manage_roles": {"name": "Gestão de funções", "category": "admin"},
    "manage_brokers": {"name": "Gestão de corretores", "category": "admin"},
    "manage_templates": {"name": "Gestão de templates", "category": "admin"},
    "view_all_leads": {"name": "Todos os leads", "category": "admin"},
}


# ============================================================================
# PLAN CATALOG SERVICE
# ============================================================================
class PlanCatalogService:
    """Read-only access to the static plan catalog."""

    # -------------------------------------------------------------------------
    # Plan Information
    # -------------------------------------------------------------------------

    def resolve_plan_code(self, code_str: Optional[str]) -> PlanCode:
        """
        Resolve a stored plan string to a PlanCode.
        Raises ConfigurationError for missing or unknown codes; no silent default.
        """
        if not code_str:
            raise ConfigurationError("No plan assigned", {"plan": code_str})
        try:
            return PlanCode(code_str)
        except ValueError:
            raise ConfigurationError(f"Unknown plan identifier: {code_str}", {"plan": code_str})

    def is_known_plan(self, code_str: Optional[str]) -> bool:
        return code_str in {p.value for p in PlanCode}

    def get_plan(self, plan_code: PlanCode) -> Dict[str, Any]:
        """Get complete plan definition (copy)."""
        return dict(PLAN_DEFINITIONS[plan_code])

    def get_all_plans(self) -> List[Dict[str, Any]]:
        """Get all plans for display, family by family in tier order."""
        return [
            {**plan, "code": code.value, "features": list(PLAN_FEATURES[code])}
            for code, plan in PLAN_DEFINITIONS.items()
        ]

    def get_tier(self, plan_code: PlanCode) -> int:
        return int(PLAN_DEFINITIONS[plan_code]["tier"])

    def get_family(self, plan_code: PlanCode) -> PlanFamily:
        return PLAN_DEFINITIONS[plan_code]["family"]

    def get_limits(self, plan_code: PlanCode) -> PlanLimits:
        plan = PLAN_DEFINITIONS[plan_code]
        return PlanLimits(
            max_landing_pages=plan["max_landing_pages"],
            max_templates=plan["max_templates"],
        )

    def plans_in_family(self, family: PlanFamily) -> List[PlanCode]:
        """Plans of one family ordered by tier."""
        codes = [code for code, plan in PLAN_DEFINITIONS.items() if plan["family"] == family]
        return sorted(codes, key=self.get_tier)

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    def get_features(self, plan_code: PlanCode) -> List[str]:
        """Ordered feature list for a plan."""
        return list(PLAN_FEATURES[plan_code])

    def get_role_features(self, role: str) -> List[str]:
        try:
            return list(ROLE_FEATURES[AppRole(role)])
        except ValueError:
            return []

    def role_gate_satisfied(self, feature: str, roles: Iterable[str]) -> bool:
        gate = FEATURE_ROLE_GATES.get(feature)
        if gate is None:
            return True
        return bool(gate.intersection(roles))

    def get_feature_metadata(self, feature: str) -> Optional[Dict]:
        return FEATURE_METADATA.get(feature)

    def get_minimum_plan_for_feature(
        self, feature: str, family: Optional[PlanFamily] = None
    ) -> Optional[PlanCode]:
        """Lowest-tier plan (optionally within one family) whose feature list has the feature."""
        candidates = [
            code for code in PLAN_DEFINITIONS
            if feature in PLAN_FEATURES[code]
            and (family is None or PLAN_DEFINITIONS[code]["family"] == family)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda c: (self.get_tier(c), list(PLAN_DEFINITIONS).index(c)))

    def check_feature_access(
        self,
        plan_code: PlanCode,
        feature: str,
        features: FrozenSet[str],
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Check if a feature is present in a resolved feature set.

        Returns:
            (is_allowed, upgrade_message, upgrade_info)
        """
        if feature in features:
            return True, None, None

        feature_info = self.get_feature_metadata(feature)
        feature_name = feature_info.get("name", feature) if feature_info else feature

        min_plan = self.get_minimum_plan_for_feature(feature, self.get_family(plan_code))
        if min_plan is None:
            min_plan = self.get_minimum_plan_for_feature(feature)

        if min_plan and self.get_tier(min_plan) > self.get_tier(plan_code):
            min_plan_def = self.get_plan(min_plan)
            upgrade_info = {
                "required_plan": min_plan.value,
                "required_plan_name": min_plan_def["name"],
                "feature_key": feature,
                "feature_name": feature_name,
                "upgrade_path": f"/upgrade?plano={min_plan.value}",
            }
            return False, f"{feature_name} requires {min_plan_def['name']} plan or higher", upgrade_info

        return False, f"{feature_name} is not available on your current plan", None

    # -------------------------------------------------------------------------
    # Entitlement Matrix (for admin/docs)
    # -------------------------------------------------------------------------

    def get_entitlement_matrix(self) -> Dict[str, Any]:
        """Generate complete feature/plan matrix for documentation."""
        matrix = {}
        for feature_key, feature_info in FEATURE_METADATA.items():
            matrix[feature_key] = {
                "name": feature_info.get("name"),
                "category": feature_info.get("category"),
                "plans": {code.value: feature_key in PLAN_FEATURES[code] for code in PlanCode},
                "roles": sorted(FEATURE_ROLE_GATES.get(feature_key, ())),
            }
        return {
            "features": matrix,
            "plans": {
                code.value: {
                    "name": plan["name"],
                    "max_landing_pages": plan["max_landing_pages"],
                    "max_templates": plan["max_templates"],
                    "monthly_price": plan["monthly_price"],
                    "setup_fee": plan["setup_fee"],
                    "commission_percent": plan["commission_percent"],
                }
                for code, plan in PLAN_DEFINITIONS.items()
            },
        }


# Singleton instance (static catalog, no I/O)
plan_catalog = PlanCatalogService()
