"""Template Registry - landing page templates and plan eligibility.

Templates are declared in registry order (ordem, then insertion). A template
is eligible for a plan when the plan is in its planos_permitidos list; an
empty list opens the template to every plan. Template tier is the lowest
tier among its allowed plans, and fallback selection is the lowest-tier
eligible template with registry order as the tie-break.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models import LandingTemplate, PlanCode, PlanTier
from services.errors import ConfigurationError, NotFoundError
from services.plan_catalog import PlanCatalogService, plan_catalog as default_catalog

logger = logging.getLogger(__name__)


# ============================================
# Built-in Templates
# ============================================

DEFAULT_HEADLINE = "Encontre o Imóvel Ideal para Morar ou Investir."
DEFAULT_SUBTITLE = (
    "Consultoria personalizada para você realizar o melhor negócio "
    "com segurança e agilidade."
)
DEFAULT_BADGES = ["Atendimento Personalizado", "CRECI Ativo", "Parceiro dos Principais Bancos"]

BUILTIN_TEMPLATES = [
    {
        "id": "start-template",
        "nome": "Essencial",
        "slug": "start-template",
        "descricao": "Landing page padrão com formulário de captura de leads",
        "thumbnail_url": None,
        "planos_permitidos": [p.value for p in PlanCode],
        "config_padrao": {
            "headline_principal": DEFAULT_HEADLINE,
            "subtitulo": DEFAULT_SUBTITLE,
            "badges_customizados": DEFAULT_BADGES,
        },
        "ativo": True,
        "ordem": 1,
    },
    {
        "id": "pro-template",
        "nome": "Profissional",
        "slug": "pro-template",
        "descricao": "Hero com imagem de fundo e destaque para o WhatsApp",
        "thumbnail_url": None,
        "planos_permitidos": ["lobby_pro", "lobby_authority", "partner_pro", "partner_authority"],
        "config_padrao": {
            "headline_principal": "Seu Próximo Imóvel Começa Aqui.",
            "subtitulo": DEFAULT_SUBTITLE,
            "badges_customizados": DEFAULT_BADGES,
            "form_config": {
                "titulo": "Fale com um Especialista",
                "subtitulo": "Responderemos em poucos minutos",
                "botao_texto": "Quero ser atendido",
            },
        },
        "ativo": True,
        "ordem": 2,
    },
    {
        "id": "authority-template",
        "nome": "Autoridade",
        "slug": "authority-template",
        "descricao": "Layout premium com vídeo, selos e prova social",
        "thumbnail_url": None,
        "planos_permitidos": ["lobby_authority", "partner_authority"],
        "config_padrao": {
            "headline_principal": "Especialista em Imóveis de Alto Padrão.",
            "subtitulo": "Atendimento exclusivo do primeiro contato às chaves na mão.",
            "badges_customizados": ["Atendimento Exclusivo", "CRECI Ativo", "Mais de 500 Negócios Fechados"],
            "form_config": {
                "titulo": "Agende uma Consultoria Exclusiva",
                "campos": {
                    "income": {"visivel": True, "obrigatorio": True},
                    "goal": {"visivel": True, "obrigatorio": False},
                    "down_payment": {"visivel": True, "obrigatorio": False},
                },
            },
        },
        "ativo": True,
        "ordem": 3,
    },
]


# ============================================
# Template Store
# ============================================

class TemplateStore(ABC):
    """Persistence contract for landing templates."""

    @abstractmethod
    async def list_templates(self, active_only: bool = True) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def seed_templates(self, templates: List[Dict[str, Any]]) -> None:
        pass


class MongoTemplateStore(TemplateStore):

    def __init__(self, db):
        self.db = db

    async def list_templates(self, active_only: bool = True) -> List[Dict[str, Any]]:
        query = {"ativo": True} if active_only else {}
        cursor = self.db.landing_templates.find(query, {"_id": 0}).sort([("ordem", 1), ("created_at", 1)])
        return await cursor.to_list(length=200)

    async def seed_templates(self, templates: List[Dict[str, Any]]) -> None:
        """Idempotent upsert of built-in templates by id."""
        now = datetime.now(timezone.utc)
        for template in templates:
            await self.db.landing_templates.update_one(
                {"id": template["id"]},
                {"$set": {**template, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        logger.info("Landing templates seeded/updated: %d", len(templates))


# ============================================
# Registry
# ============================================

def to_template(raw: Dict[str, Any]) -> LandingTemplate:
    return LandingTemplate(
        id=raw["id"],
        nome=raw.get("nome") or raw.get("slug") or raw["id"],
        slug=raw.get("slug") or raw["id"],
        descricao=raw.get("descricao"),
        thumbnail_url=raw.get("thumbnail_url"),
        planos_permitidos=tuple(raw.get("planos_permitidos") or ()),
        config_padrao=raw.get("config_padrao") or {},
        ativo=raw.get("ativo", True) is not False,
        ordem=raw.get("ordem") or 0,
    )


class TemplateRegistry:
    """Template listing, validation and plan eligibility."""

    def __init__(self, store: TemplateStore, catalog: Optional[PlanCatalogService] = None):
        self.store = store
        self.catalog = catalog or default_catalog

    async def list_templates(self, active_only: bool = True) -> List[LandingTemplate]:
        templates = [to_template(raw) for raw in await self.store.list_templates(active_only)]
        self.validate(templates)
        return templates

    async def get_template(self, template_id: str, active_only: bool = False) -> LandingTemplate:
        for template in await self.list_templates(active_only=active_only):
            if template.id == template_id:
                return template
        raise NotFoundError(f"Template not found: {template_id}", {"template_id": template_id})

    def validate(self, templates: List[LandingTemplate]) -> None:
        """Reject unknown plan codes and duplicate slugs."""
        seen_slugs = set()
        for template in templates:
            unknown = [p for p in template.planos_permitidos if not self.catalog.is_known_plan(p)]
            if unknown:
                raise ConfigurationError(
                    f"Template {template.id} references unknown plans: {unknown}",
                    {"template_id": template.id, "unknown_plans": unknown},
                )
            if template.slug in seen_slugs:
                raise ConfigurationError(
                    f"Duplicate template slug: {template.slug}",
                    {"template_id": template.id},
                )
            seen_slugs.add(template.slug)

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def is_allowed(self, template: LandingTemplate, plan: PlanCode) -> bool:
        if not template.ativo:
            return False
        if not template.planos_permitidos:
            return True
        return plan.value in template.planos_permitidos

    def template_tier(self, template: LandingTemplate) -> int:
        if not template.planos_permitidos:
            return int(PlanTier.START)
        return min(self.catalog.get_tier(PlanCode(p)) for p in template.planos_permitidos)

    def required_plan(self, template: LandingTemplate, plan: Optional[PlanCode] = None) -> Optional[PlanCode]:
        """Lowest-tier allowed plan, preferring the broker's own family.

        With a current plan, the answer is always a plan above it: a template
        the plan may use but that falls past its max_templates needs the next
        tier up. Returns None when no higher plan exists.
        """
        if not template.planos_permitidos and plan is None:
            return None
        allowed = [PlanCode(p) for p in template.planos_permitidos] or list(PlanCode)
        if plan is None:
            return min(allowed, key=lambda p: (self.catalog.get_tier(p), allowed.index(p)))

        family = self.catalog.get_family(plan)
        current_tier = self.catalog.get_tier(plan)
        higher = [p for p in allowed if self.catalog.get_tier(p) > current_tier]
        if not higher and plan in allowed:
            # Clamped out by max_templates; a higher tier in the family lifts the clamp
            higher = [p for p in self.catalog.plans_in_family(family) if self.catalog.get_tier(p) > current_tier]
        if not higher:
            return None
        same_family = [p for p in higher if self.catalog.get_family(p) == family]
        candidates = same_family or higher
        return min(candidates, key=lambda p: (self.catalog.get_tier(p), candidates.index(p)))

    def eligible_templates(self, templates: List[LandingTemplate], plan: PlanCode) -> List[LandingTemplate]:
        """Allowed templates ordered by (tier, registry order), clamped to the plan's max_templates."""
        indexed = [(i, t) for i, t in enumerate(templates) if self.is_allowed(t, plan)]
        indexed.sort(key=lambda pair: (self.template_tier(pair[1]), pair[0]))
        limit = self.catalog.get_limits(plan).max_templates
        return [t for _, t in indexed][:limit]

    def default_template_for(self, templates: List[LandingTemplate], plan: PlanCode) -> LandingTemplate:
        eligible = self.eligible_templates(templates, plan)
        if not eligible:
            raise ConfigurationError(
                f"No usable landing template for plan {plan.value}",
                {"plan": plan.value},
            )
        return eligible[0]
