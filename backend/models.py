from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Annotated, Optional, Dict, Any, List, Literal, Tuple, FrozenSet
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class PlanFamily(str, Enum):
    LOBBY = "lobby"        # Assinatura: setup fee + fixed monthly
    PARTNER = "partner"    # Parceria: reduced monthly + commission on sales

class PlanTier(int, Enum):
    START = 1
    PRO = 2
    AUTHORITY = 3

class PlanCode(str, Enum):
    """Canonical plan codes as stored on the broker profile."""
    LOBBY_START = "lobby_start"
    LOBBY_PRO = "lobby_pro"
    LOBBY_AUTHORITY = "lobby_authority"
    PARTNER_START = "partner_start"
    PARTNER_PRO = "partner_pro"
    PARTNER_AUTHORITY = "partner_authority"

class AppRole(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    CORRETOR = "corretor"
    USER = "user"

class AuditAction(str, Enum):
    ROLE_GRANTED = "ROLE_GRANTED"
    ROLE_REVOKED = "ROLE_REVOKED"
    LANDING_CONFIG_CREATED = "LANDING_CONFIG_CREATED"
    LANDING_CONFIG_UPDATED = "LANDING_CONFIG_UPDATED"
    PLAN_GATE_DENIED = "PLAN_GATE_DENIED"


# ============================================================================
# LEAD FORM SCHEMA
# ============================================================================

LEAD_FORM_FIELDS = ("income", "goal", "down_payment")

class FormFieldConfig(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    visivel: bool = True
    obrigatorio: bool = False

class FormCampos(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    income: FormFieldConfig = Field(default_factory=FormFieldConfig)
    goal: FormFieldConfig = Field(default_factory=FormFieldConfig)
    down_payment: FormFieldConfig = Field(default_factory=FormFieldConfig)

class FormConfig(BaseModel):
    """Lead capture form shown on the landing page (schema version 1)."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1] = 1
    titulo: str = Field("Receba uma Consultoria Gratuita", max_length=100)
    subtitulo: str = Field("Preencha o formulário e entraremos em contato", max_length=150)
    botao_texto: str = Field("Quero minha consultoria agora", max_length=50)
    campos: FormCampos = Field(default_factory=FormCampos)


# ============================================================================
# CONFIG EXTRA SCHEMA
# ============================================================================

class ConfigExtra(BaseModel):
    """Structured replacement for the free-form config_extra blob (schema version 1)."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: Literal[1] = 1
    landing_pages: Tuple[str, ...] = ()
    cor_destaque: Optional[str] = Field(None, pattern=r'^#[0-9A-Fa-f]{6}$')


# ============================================================================
# TEMPLATES
# ============================================================================

class LandingTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    nome: str
    slug: str
    descricao: Optional[str] = None
    thumbnail_url: Optional[str] = None
    planos_permitidos: Tuple[str, ...] = ()
    config_padrao: Dict[str, Any] = Field(default_factory=dict)
    ativo: bool = True
    ordem: int = 0


# ============================================================================
# CONFIG RECORD (broker-owned overrides)
# ============================================================================

# Fields the broker may write through the editor
EDITABLE_CONFIG_FIELDS = (
    "template_id",
    "whatsapp",
    "email_contato",
    "creci",
    "instagram_url",
    "facebook_url",
    "linkedin_url",
    "tiktok_url",
    "youtube_url",
    "headline_principal",
    "subtitulo",
    "imagem_fundo_url",
    "badges_customizados",
    "config_extra",
    "form_config",
)

TEXT_CONFIG_FIELDS = (
    "whatsapp",
    "email_contato",
    "creci",
    "headline_principal",
    "subtitulo",
)

SOCIAL_LINK_FIELDS = (
    "instagram_url",
    "facebook_url",
    "linkedin_url",
    "tiktok_url",
    "youtube_url",
)

class LandingConfigRecord(BaseModel):
    id: str
    corretor_id: str
    template_id: Optional[str] = None
    whatsapp: Optional[str] = None
    email_contato: Optional[str] = None
    creci: Optional[str] = None
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    linkedin_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    youtube_url: Optional[str] = None
    headline_principal: Optional[str] = None
    subtitulo: Optional[str] = None
    imagem_fundo_url: Optional[str] = None
    badges_customizados: Optional[List[str]] = None
    config_extra: Optional[ConfigExtra] = None
    form_config: Optional[FormConfig] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class LandingConfigUpdate(BaseModel):
    """Partial write from the editor. Only fields explicitly sent are applied."""
    model_config = ConfigDict(extra="forbid")

    template_id: Optional[str] = None
    whatsapp: Optional[str] = Field(None, pattern=r'^\+?\d{10,15}$')
    email_contato: Optional[EmailStr] = None
    creci: Optional[str] = Field(None, max_length=30)
    instagram_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=500)
    facebook_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=500)
    linkedin_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=500)
    tiktok_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=500)
    youtube_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=500)
    headline_principal: Optional[str] = Field(None, max_length=120)
    subtitulo: Optional[str] = Field(None, max_length=250)
    imagem_fundo_url: Optional[str] = Field(None, pattern=r'^https?://', max_length=1000)
    badges_customizados: Optional[List[Annotated[str, Field(min_length=1, max_length=40)]]] = Field(None, max_length=6)
    config_extra: Optional[ConfigExtra] = None
    form_config: Optional[FormConfig] = None


# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    corretor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# CAPABILITIES & RESOLVED CONFIG (read-only outputs)
# ============================================================================

class PlanLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_landing_pages: int
    max_templates: int

class CapabilitySet(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    plan: PlanCode
    plan_name: str
    roles: FrozenSet[str] = frozenset()
    features: FrozenSet[str] = frozenset()
    limits: PlanLimits

    def has(self, feature: str) -> bool:
        return feature in self.features

class TemplateSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    nome: str
    slug: str
    thumbnail_url: Optional[str] = None

class ResolvedLandingConfig(BaseModel):
    """Render-ready landing configuration. Shared between renders; never mutate."""
    model_config = ConfigDict(frozen=True)

    corretor_id: str
    template_id: Optional[str] = None
    template_slug: Optional[str] = None
    template_fallback: bool = False
    whatsapp: str = ""
    email_contato: str = ""
    creci: str = ""
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    linkedin_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    youtube_url: Optional[str] = None
    headline_principal: str = ""
    subtitulo: str = ""
    imagem_fundo_url: Optional[str] = None
    badges_customizados: Tuple[str, ...] = ()
    cor_destaque: Optional[str] = None
    form_config: FormConfig = Field(default_factory=FormConfig)
    landing_pages: Tuple[str, ...] = ()
    landing_page_count: int = 1
    available_templates: Tuple[TemplateSummary, ...] = ()
    capabilities: Optional[CapabilitySet] = None
    is_fallback: bool = False
