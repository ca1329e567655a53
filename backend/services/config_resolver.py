"""Config Resolver - merges stored overrides, template defaults and built-in
fallbacks into the render-ready landing configuration.

Field precedence: broker override (non-null) > template config_padrao >
built-in fallback. Plan-gated overrides left over from a higher plan are
ignored on read and rejected on write.

Flow:
    account id -> EntitlementResolver -> CapabilitySet
               -> ConfigStore record + TemplateRegistry template
               -> ResolvedLandingConfig (frozen)
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from models import (
    AuditAction,
    CapabilitySet,
    ConfigExtra,
    EDITABLE_CONFIG_FIELDS,
    LandingConfigRecord,
    LandingConfigUpdate,
    LandingTemplate,
    PlanCode,
    ResolvedLandingConfig,
    SOCIAL_LINK_FIELDS,
    TEXT_CONFIG_FIELDS,
    TemplateSummary,
)
from services.config_store import ConfigStore
from services.entitlement_resolver import EntitlementResolver
from services.errors import ConfigurationError, NotFoundError, PlanViolationError, ValidationError
from services.form_schema import (
    merge_form_defaults,
    migrate_config_extra,
    migrate_form_config,
    migrate_record_fields,
    normalize_form_config,
)
from services.template_registry import DEFAULT_BADGES, DEFAULT_HEADLINE, TemplateRegistry
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


# Override fields that need a capability to take effect
GATED_FIELDS = {
    "headline_principal": "edit_headline",
    "subtitulo": "edit_headline",
    "badges_customizados": "custom_badges",
}

IMMUTABLE_FIELDS = ("id", "corretor_id")

# Empty strings in these fields are stored as null ("use default")
NULLABLE_STRING_FIELDS = ("template_id",) + TEXT_CONFIG_FIELDS + SOCIAL_LINK_FIELDS + ("imagem_fundo_url",)


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def _field_errors(exc: PydanticValidationError) -> Dict[str, str]:
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        errors.setdefault(field, error["msg"])
    return errors


class ConfigResolver:
    """Resolves and saves per-broker landing configuration."""

    def __init__(
        self,
        config_store: ConfigStore,
        template_registry: TemplateRegistry,
        entitlement_resolver: EntitlementResolver,
        audit_db=None,
    ):
        self.config_store = config_store
        self.templates = template_registry
        self.entitlements = entitlement_resolver
        self.audit_db = audit_db

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(self, account_id: str) -> ResolvedLandingConfig:
        """
        Fully resolved configuration for the editor.

        Raises:
            NotFoundError: unknown account
            ConfigurationError: bad plan or no usable template for the plan
        """
        capabilities = await self.entitlements.resolve(account_id)
        record = await self._load_record(account_id)
        templates = await self.templates.list_templates(active_only=True)
        return self.build(account_id, capabilities, record, templates)

    async def _load_record(self, account_id: str) -> Dict[str, Any]:
        stored = await self.config_store.get_config(account_id)
        return migrate_record_fields(stored, account_id) if stored else {}

    async def resolve_public(self, account_id: str) -> ResolvedLandingConfig:
        """Public render: never fails for a missing account or bad catalog, and hides capabilities."""
        try:
            resolved = await self.resolve(account_id)
        except (NotFoundError, ConfigurationError) as e:
            logger.error(
                "Public landing fallback for %s: %s (%s)",
                account_id, e.message, e.error_code
            )
            return self.minimal_page(account_id)
        return resolved.model_copy(update={"capabilities": None, "available_templates": ()})

    def minimal_page(self, account_id: str) -> ResolvedLandingConfig:
        return ResolvedLandingConfig(
            corretor_id=account_id,
            headline_principal=DEFAULT_HEADLINE,
            badges_customizados=tuple(DEFAULT_BADGES),
            is_fallback=True,
        )

    def select_template(
        self,
        templates: List[LandingTemplate],
        plan: PlanCode,
        template_id: Optional[str],
        account_id: str,
    ) -> Tuple[LandingTemplate, bool]:
        """Effective template and whether the stored choice had to be replaced."""
        eligible = self.templates.eligible_templates(templates, plan)
        if template_id:
            for template in eligible:
                if template.id == template_id:
                    return template, False

        fallback = self.templates.default_template_for(templates, plan)
        if template_id:
            logger.warning(
                "Template %s not usable on plan %s for %s; falling back to %s",
                template_id, plan.value, account_id, fallback.id
            )
        return fallback, bool(template_id)

    def build(
        self,
        account_id: str,
        capabilities: CapabilitySet,
        record: Dict[str, Any],
        templates: List[LandingTemplate],
    ) -> ResolvedLandingConfig:
        template, replaced = self.select_template(
            templates, capabilities.plan, record.get("template_id"), account_id
        )
        defaults = template.config_padrao

        def pick(field: str, fallback: Any) -> Any:
            gate = GATED_FIELDS.get(field)
            override = record.get(field)
            if _is_set(override) and (gate is None or capabilities.has(gate)):
                return override
            if _is_set(defaults.get(field)):
                return defaults[field]
            return fallback

        values = {field: pick(field, "") for field in TEXT_CONFIG_FIELDS}
        values.update({field: pick(field, None) for field in SOCIAL_LINK_FIELDS})
        values["imagem_fundo_url"] = pick("imagem_fundo_url", None)
        values["badges_customizados"] = tuple(pick("badges_customizados", None) or ())

        form_override = migrate_form_config(record.get("form_config"), account_id)
        values["form_config"] = merge_form_defaults(form_override, defaults.get("form_config"))

        extra = migrate_config_extra(record.get("config_extra"), account_id) or ConfigExtra()
        max_pages = capabilities.limits.max_landing_pages
        if not capabilities.has("custom_landing_pages"):
            # Only the default page; stored extra pages stay in the record
            max_pages = 0
        landing_pages = extra.landing_pages[:max_pages]
        if len(extra.landing_pages) > max_pages:
            logger.info(
                "Clamping landing pages for %s: %d configured, plan allows %d",
                account_id, len(extra.landing_pages), max_pages
            )

        eligible = self.templates.eligible_templates(templates, capabilities.plan)
        return ResolvedLandingConfig(
            corretor_id=account_id,
            template_id=template.id,
            template_slug=template.slug,
            template_fallback=replaced,
            cor_destaque=extra.cor_destaque or defaults.get("cor_destaque"),
            landing_pages=landing_pages,
            landing_page_count=max(1, len(landing_pages)),
            available_templates=tuple(
                TemplateSummary(id=t.id, nome=t.nome, slug=t.slug, thumbnail_url=t.thumbnail_url)
                for t in eligible
            ),
            capabilities=capabilities,
            **values,
        )

    # =========================================================================
    # Template gallery
    # =========================================================================

    async def list_templates_for(self, account_id: str) -> List[Dict[str, Any]]:
        """Every active template with lock state for the broker's gallery."""
        capabilities = await self.entitlements.resolve(account_id)
        record = await self._load_record(account_id)
        templates = await self.templates.list_templates(active_only=True)

        plan = capabilities.plan
        selected, _ = self.select_template(templates, plan, record.get("template_id"), account_id)
        eligible_ids = {t.id for t in self.templates.eligible_templates(templates, plan)}

        gallery = []
        for template in templates:
            allowed = template.id in eligible_ids
            required = None if allowed else self.templates.required_plan(template, plan)
            gallery.append({
                "id": template.id,
                "nome": template.nome,
                "slug": template.slug,
                "descricao": template.descricao,
                "thumbnail_url": template.thumbnail_url,
                "allowed": allowed,
                "selected": template.id == selected.id,
                "required_plan": required.value if required else None,
                "required_plan_name": (
                    self.templates.catalog.get_plan(required)["name"] if required else None
                ),
            })
        return gallery

    # =========================================================================
    # Save
    # =========================================================================

    async def get_record(self, account_id: str) -> Optional[LandingConfigRecord]:
        stored = await self.config_store.get_config(account_id)
        if not stored:
            return None
        return self._to_record(account_id, stored)

    def _to_record(self, account_id: str, stored: Dict[str, Any]) -> LandingConfigRecord:
        data = {
            k: v for k, v in migrate_record_fields(stored, account_id).items()
            if k in LandingConfigRecord.model_fields
        }
        data["form_config"] = migrate_form_config(stored.get("form_config"), account_id)
        data["config_extra"] = migrate_config_extra(stored.get("config_extra"), account_id)
        return LandingConfigRecord(**data)

    def validate_update(self, partial_update: Dict[str, Any]) -> Dict[str, Any]:
        """Validate an editor write; returns only the fields that were sent."""
        if not isinstance(partial_update, dict):
            raise ValidationError({"body": "Expected an object of fields"})

        field_errors = {}
        payload = {}
        for key, value in partial_update.items():
            if key in IMMUTABLE_FIELDS:
                field_errors[key] = "Field is immutable"
            elif key not in EDITABLE_CONFIG_FIELDS:
                field_errors[key] = "Unknown field"
            elif key in NULLABLE_STRING_FIELDS and isinstance(value, str) and not value.strip():
                payload[key] = None
            else:
                payload[key] = value

        try:
            update = LandingConfigUpdate.model_validate(payload)
        except PydanticValidationError as e:
            field_errors.update(_field_errors(e))
            update = None

        if field_errors:
            raise ValidationError(field_errors)

        fields = update.model_dump(exclude_unset=True, mode="json")
        if update.form_config is not None:
            fields["form_config"] = normalize_form_config(update.form_config).model_dump(mode="json")
        return fields

    async def _check_plan_gates(self, capabilities: CapabilitySet, fields: Dict[str, Any]) -> None:
        for field, feature in GATED_FIELDS.items():
            if fields.get(field) is not None:
                self.entitlements.require_feature(capabilities, feature)

        pages = (fields.get("config_extra") or {}).get("landing_pages") or ()
        if pages:
            self.entitlements.require_feature(capabilities, "custom_landing_pages")
        if len(pages) > capabilities.limits.max_landing_pages:
            raise PlanViolationError(
                f"Your plan allows up to {capabilities.limits.max_landing_pages} landing page(s)",
                feature="custom_landing_pages",
                current_plan=capabilities.plan.value,
                upgrade_info={"max_landing_pages": capabilities.limits.max_landing_pages},
            )

        template_id = fields.get("template_id")
        if template_id is None:
            return
        templates = await self.templates.list_templates(active_only=True)
        template = next((t for t in templates if t.id == template_id), None)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}", {"template_id": template_id})

        eligible = self.templates.eligible_templates(templates, capabilities.plan)
        if any(t.id == template.id for t in eligible):
            return
        required = self.templates.required_plan(template, capabilities.plan)
        upgrade_info = None
        if required is not None:
            upgrade_info = {
                "required_plan_name": self.templates.catalog.get_plan(required)["name"],
                "upgrade_path": f"/upgrade?plano={required.value}",
            }
        raise PlanViolationError(
            f"Template {template.nome} is not available on your current plan",
            feature="template",
            current_plan=capabilities.plan.value,
            required_plan=required.value if required else None,
            upgrade_info=upgrade_info,
        )

    async def save(
        self,
        account_id: str,
        partial_update: Dict[str, Any],
        actor_id: Optional[str] = None,
    ) -> LandingConfigRecord:
        """
        Apply a partial update to the broker's config record.

        Only fields present in the update change. The write is one atomic
        upsert; on any error nothing is written.

        Raises:
            ValidationError: malformed or non-editable fields (all reported at once)
            PlanViolationError: field or template not allowed on the current plan
            NotFoundError: unknown account or template
            ConfigurationError: bad plan or template catalog
        """
        fields = self.validate_update(partial_update)
        capabilities = await self.entitlements.resolve(account_id)

        try:
            await self._check_plan_gates(capabilities, fields)
        except PlanViolationError as e:
            await create_audit_log(
                self.audit_db,
                action=AuditAction.PLAN_GATE_DENIED,
                actor_id=actor_id or account_id,
                corretor_id=account_id,
                resource_type="landing_config",
                resource_id=account_id,
                metadata={"feature": e.feature, "plan": capabilities.plan.value},
            )
            raise

        before = await self.config_store.get_config(account_id)
        stored = await self.config_store.upsert_config(account_id, fields)

        before_state = {k: before.get(k) for k in fields} if before else None
        await create_audit_log(
            self.audit_db,
            action=AuditAction.LANDING_CONFIG_UPDATED if before else AuditAction.LANDING_CONFIG_CREATED,
            actor_id=actor_id or account_id,
            corretor_id=account_id,
            resource_type="landing_config",
            resource_id=stored.get("id"),
            before_state=before_state,
            after_state={k: stored.get(k) for k in fields},
        )
        return self._to_record(account_id, stored)
