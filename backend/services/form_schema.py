"""Versioned schemas for the lead form (form_config) and config_extra, plus
load-time coercion of the record's scalar overrides.

Stored documents written before schema versioning (version 0) carry no
schema_version key, may hold unknown keys and may encode a form field as a
bare boolean (visible or not). Loading is lenient: legacy documents are
migrated to the current version, unknown keys are dropped with a warning and
an unreadable value falls back to defaults. Saving is strict (see
LandingConfigUpdate).
"""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from models import (
    ConfigExtra,
    FormCampos,
    FormConfig,
    FormFieldConfig,
    LEAD_FORM_FIELDS,
    SOCIAL_LINK_FIELDS,
    TEXT_CONFIG_FIELDS,
)

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1

FORM_CONFIG_KEYS = ("titulo", "subtitulo", "botao_texto", "campos")
CONFIG_EXTRA_KEYS = ("landing_pages", "cor_destaque")
RECORD_TEXT_FIELDS = ("template_id",) + TEXT_CONFIG_FIELDS + SOCIAL_LINK_FIELDS + ("imagem_fundo_url",)


# ============================================
# Lead Form
# ============================================

def normalize_form_config(form: FormConfig) -> FormConfig:
    """A hidden field can never be required."""
    campos = {}
    changed = False
    for name in LEAD_FORM_FIELDS:
        field = getattr(form.campos, name)
        if field.obrigatorio and not field.visivel:
            field = FormFieldConfig(visivel=False, obrigatorio=False)
            changed = True
        campos[name] = field
    if not changed:
        return form
    return form.model_copy(update={"campos": FormCampos(**campos)})


def _migrate_campos_v0(raw_campos: Any) -> Dict[str, Any]:
    if not isinstance(raw_campos, dict):
        return {}
    campos = {}
    for name in LEAD_FORM_FIELDS:
        value = raw_campos.get(name)
        if isinstance(value, bool):
            campos[name] = {"visivel": value, "obrigatorio": False}
        elif isinstance(value, dict):
            campos[name] = {
                "visivel": bool(value.get("visivel", True)),
                "obrigatorio": bool(value.get("obrigatorio", False)),
            }
    dropped = sorted(set(raw_campos) - set(LEAD_FORM_FIELDS))
    if dropped:
        logger.warning("form_config.campos: dropping unknown fields %s", dropped)
    return campos


def migrate_form_config(raw: Optional[Dict[str, Any]], corretor_id: Optional[str] = None) -> Optional[FormConfig]:
    """Load a stored form_config into the current schema. None stays None (use default)."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("form_config for %s is not an object; using defaults", corretor_id)
        return FormConfig()

    version = raw.get("schema_version", 0)
    data = {k: raw[k] for k in FORM_CONFIG_KEYS if k in raw and raw[k] is not None}

    if version == 0:
        dropped = sorted(set(raw) - set(FORM_CONFIG_KEYS) - {"schema_version"})
        if dropped:
            logger.warning("form_config for %s: dropping unknown keys %s", corretor_id, dropped)
        data["campos"] = _migrate_campos_v0(raw.get("campos"))
        logger.info("Migrated legacy form_config for %s to v%d", corretor_id, CURRENT_SCHEMA_VERSION)
    elif version != CURRENT_SCHEMA_VERSION:
        logger.warning(
            "form_config for %s has unsupported schema_version %s; using defaults",
            corretor_id, version
        )
        return FormConfig()

    try:
        form = FormConfig(**data)
    except PydanticValidationError as e:
        logger.warning("Invalid stored form_config for %s; using defaults: %s", corretor_id, e)
        return FormConfig()
    return normalize_form_config(form)


def merge_form_defaults(
    override: Optional[FormConfig], template_default: Optional[Dict[str, Any]]
) -> FormConfig:
    """Field resolution for the lead form: override, else template default, else built-in."""
    if override is not None:
        return normalize_form_config(override)
    if template_default:
        form = migrate_form_config({**template_default, "schema_version": CURRENT_SCHEMA_VERSION})
        if form is not None:
            return form
    return FormConfig()


# ============================================
# Config Extra
# ============================================

def _landing_page_slugs(raw_pages: Any) -> list:
    slugs = []
    for page in raw_pages or []:
        if isinstance(page, str) and page:
            slugs.append(page)
        elif isinstance(page, dict) and page.get("slug"):
            slugs.append(str(page["slug"]))
    return slugs


def migrate_config_extra(raw: Optional[Dict[str, Any]], corretor_id: Optional[str] = None) -> Optional[ConfigExtra]:
    """Load a stored config_extra into the current schema. None stays None."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("config_extra for %s is not an object; using defaults", corretor_id)
        return ConfigExtra()

    version = raw.get("schema_version", 0)
    if version not in (0, CURRENT_SCHEMA_VERSION):
        logger.warning(
            "config_extra for %s has unsupported schema_version %s; using defaults",
            corretor_id, version
        )
        return ConfigExtra()

    dropped = sorted(set(raw) - set(CONFIG_EXTRA_KEYS) - {"schema_version"})
    if dropped:
        logger.warning("config_extra for %s: dropping unknown keys %s", corretor_id, dropped)

    data = {"landing_pages": tuple(_landing_page_slugs(raw.get("landing_pages")))}
    if raw.get("cor_destaque"):
        data["cor_destaque"] = raw["cor_destaque"]
    try:
        return ConfigExtra(**data)
    except PydanticValidationError as e:
        logger.warning("Invalid stored config_extra for %s; dropping accent colour: %s", corretor_id, e)
        return ConfigExtra(landing_pages=data["landing_pages"])


# ============================================
# Scalar Fields
# ============================================

def _coerce_text(value: Any, field: str, corretor_id: Optional[str]) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    logger.warning("%s for %s is not text (%s); ignoring", field, corretor_id, type(value).__name__)
    return None


def _coerce_badges(value: Any, corretor_id: Optional[str]) -> Optional[list]:
    if value is None:
        return None
    if isinstance(value, str):
        logger.warning("badges_customizados for %s is a bare string; wrapping it", corretor_id)
        return [value] if value else None
    if isinstance(value, (list, tuple)):
        badges = [b for b in value if isinstance(b, str) and b]
        if len(badges) != len(value):
            logger.warning("badges_customizados for %s: dropping non-text entries", corretor_id)
        return badges
    logger.warning(
        "badges_customizados for %s is not a list (%s); ignoring", corretor_id, type(value).__name__
    )
    return None


def migrate_record_fields(raw: Dict[str, Any], corretor_id: Optional[str] = None) -> Dict[str, Any]:
    """Copy of a stored config record with its scalar overrides coerced to the current types.

    Numbers in text fields become strings, a bare badge string becomes a
    one-item list, and anything else unreadable is dropped (use default).
    """
    record = dict(raw)
    for field in RECORD_TEXT_FIELDS:
        if field in record:
            record[field] = _coerce_text(record[field], field, corretor_id)
    if "badges_customizados" in record:
        record["badges_customizados"] = _coerce_badges(record["badges_customizados"], corretor_id)
    return record
