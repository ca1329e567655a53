"""
Config resolver tests: field precedence, template fallback, lead form
normalization, landing page clamp, plan-gated writes and partial saves.
"""
import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from pydantic import ValidationError as PydanticValidationError

from models import FormConfig
from services.config_resolver import ConfigResolver
from services.errors import ConfigurationError, NotFoundError, PlanViolationError, ValidationError
from services.template_registry import BUILTIN_TEMPLATES, DEFAULT_HEADLINE, TemplateRegistry
from conftest import InMemoryConfigStore, InMemoryTemplateStore

START_DEFAULTS = BUILTIN_TEMPLATES[0]["config_padrao"]


def stored(account_id, **fields):
    return {"id": f"cfg-{account_id}", "corretor_id": account_id, **fields}


class TestResolve:

    @pytest.mark.asyncio
    async def test_all_null_record_uses_template_defaults(self, config_resolver, config_store):
        config_store.records["broker-start"] = stored(
            "broker-start", headline_principal=None, subtitulo=None, badges_customizados=None,
            form_config=None, config_extra=None, whatsapp=None,
        )
        resolved = await config_resolver.resolve("broker-start")

        assert resolved.template_id == "start-template"
        assert resolved.headline_principal == START_DEFAULTS["headline_principal"]
        assert resolved.subtitulo == START_DEFAULTS["subtitulo"]
        assert resolved.badges_customizados == tuple(START_DEFAULTS["badges_customizados"])
        assert resolved.form_config == FormConfig()
        assert resolved.whatsapp == ""
        assert resolved.instagram_url is None
        assert resolved.template_fallback is False

    @pytest.mark.asyncio
    async def test_absent_record_resolves(self, config_resolver):
        resolved = await config_resolver.resolve("broker-pro")
        assert resolved.template_id == "start-template"
        assert resolved.landing_page_count == 1
        assert [t.id for t in resolved.available_templates] == ["start-template", "pro-template"]

    @pytest.mark.asyncio
    async def test_ineligible_stored_template_falls_back_deterministically(self, config_resolver, config_store):
        config_store.records["broker-start"] = stored("broker-start", template_id="authority-template")

        first = await config_resolver.resolve("broker-start")
        second = await config_resolver.resolve("broker-start")

        assert first.template_id == second.template_id == "start-template"
        assert first.template_fallback is True
        assert first == second

    @pytest.mark.asyncio
    async def test_template_defaults_apply_for_selected_template(self, config_resolver, config_store):
        config_store.records["broker-authority"] = stored("broker-authority", template_id="authority-template")
        resolved = await config_resolver.resolve("broker-authority")
        assert resolved.template_slug == "authority-template"
        assert resolved.form_config.titulo == "Agende uma Consultoria Exclusiva"
        assert resolved.form_config.campos.income.obrigatorio is True

    @pytest.mark.asyncio
    async def test_required_but_hidden_field_normalized(self, config_resolver, config_store):
        config_store.records["broker-pro"] = stored("broker-pro", form_config={
            "schema_version": 1,
            "campos": {"goal": {"visivel": False, "obrigatorio": True}},
        })
        resolved = await config_resolver.resolve("broker-pro")
        assert resolved.form_config.campos.goal.visivel is False
        assert resolved.form_config.campos.goal.obrigatorio is False

    @pytest.mark.asyncio
    async def test_start_plan_gets_no_custom_landing_pages(self, config_resolver, config_store):
        pages = [f"pagina-{i}" for i in range(10)]
        config_store.records["broker-start"] = stored("broker-start", config_extra={"landing_pages": pages})

        resolved = await config_resolver.resolve("broker-start")

        assert resolved.landing_page_count == 1
        assert resolved.landing_pages == ()
        assert config_store.records["broker-start"]["config_extra"]["landing_pages"] == pages

    @pytest.mark.asyncio
    async def test_landing_pages_clamped_to_plan_limit(self, config_resolver, config_store):
        pages = [f"pagina-{i}" for i in range(10)]
        config_store.records["broker-pro"] = stored("broker-pro", config_extra={"landing_pages": pages})

        resolved = await config_resolver.resolve("broker-pro")

        assert resolved.landing_page_count == 4
        assert resolved.landing_pages == tuple(pages[:4])

    @pytest.mark.asyncio
    async def test_legacy_scalar_fields_coerced_on_read(self, config_resolver, config_store):
        config_store.records["broker-authority"] = stored(
            "broker-authority", badges_customizados="Selo", whatsapp=5511999999999, creci=["x"]
        )
        resolved = await config_resolver.resolve("broker-authority")
        assert resolved.badges_customizados == ("Selo",)
        assert resolved.whatsapp == "5511999999999"
        assert resolved.creci == ""

        record = await config_resolver.get_record("broker-authority")
        assert record.badges_customizados == ["Selo"]
        assert record.creci is None

    @pytest.mark.asyncio
    async def test_stale_gated_overrides_ignored_after_downgrade(self, config_resolver, config_store):
        config_store.records["broker-start"] = stored(
            "broker-start", headline_principal="Minha headline", badges_customizados=["Selo"]
        )
        resolved = await config_resolver.resolve("broker-start")
        assert resolved.headline_principal == START_DEFAULTS["headline_principal"]
        assert resolved.badges_customizados == tuple(START_DEFAULTS["badges_customizados"])

    @pytest.mark.asyncio
    async def test_downgrade_falls_back_without_losing_stored_data(
        self, config_resolver, config_store, account_store
    ):
        await config_resolver.save("broker-authority", {
            "template_id": "authority-template",
            "badges_customizados": ["Top 1%"],
        })
        account_store.set_plan("broker-authority", "lobby_start")

        resolved = await config_resolver.resolve("broker-authority")

        assert resolved.template_id == "start-template"
        assert resolved.template_fallback is True
        assert resolved.badges_customizados == tuple(START_DEFAULTS["badges_customizados"])
        assert config_store.records["broker-authority"]["badges_customizados"] == ["Top 1%"]

    @pytest.mark.asyncio
    async def test_overrides_win_when_capability_present(self, config_resolver, config_store):
        config_store.records["broker-authority"] = stored(
            "broker-authority", headline_principal="Imóveis em Moema", badges_customizados=["Top 1%"]
        )
        resolved = await config_resolver.resolve("broker-authority")
        assert resolved.headline_principal == "Imóveis em Moema"
        assert resolved.badges_customizados == ("Top 1%",)

    @pytest.mark.asyncio
    async def test_resolved_config_is_frozen(self, config_resolver):
        resolved = await config_resolver.resolve("broker-pro")
        with pytest.raises(PydanticValidationError):
            resolved.whatsapp = "123"

    @pytest.mark.asyncio
    async def test_no_usable_template_raises(self, config_store, entitlement_resolver):
        registry = TemplateRegistry(InMemoryTemplateStore([BUILTIN_TEMPLATES[2]]))
        resolver = ConfigResolver(config_store, registry, entitlement_resolver)
        with pytest.raises(ConfigurationError):
            await resolver.resolve("broker-start")

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, config_resolver):
        with pytest.raises(NotFoundError):
            await config_resolver.resolve("ghost")


class TestResolvePublic:

    @pytest.mark.asyncio
    async def test_public_hides_capabilities(self, config_resolver):
        resolved = await config_resolver.resolve_public("broker-pro")
        assert resolved.capabilities is None
        assert resolved.is_fallback is False

    @pytest.mark.asyncio
    async def test_unknown_account_gets_minimal_page(self, config_resolver):
        resolved = await config_resolver.resolve_public("ghost")
        assert resolved.is_fallback is True
        assert resolved.template_id is None
        assert resolved.headline_principal == DEFAULT_HEADLINE

    @pytest.mark.asyncio
    async def test_bad_plan_gets_minimal_page(self, config_resolver, caplog):
        resolved = await config_resolver.resolve_public("broker-badplan")
        assert resolved.is_fallback is True
        assert "Public landing fallback" in caplog.text


class TestSave:

    @pytest.mark.asyncio
    async def test_partial_save_changes_only_sent_fields(self, config_resolver, config_store):
        config_store.records["broker-pro"] = stored(
            "broker-pro", creci="12345-F", headline_principal="Antes", template_id="pro-template"
        )
        before = await config_resolver.resolve("broker-pro")

        await config_resolver.save("broker-pro", {"whatsapp": "5511999999999"})
        after = await config_resolver.resolve("broker-pro")

        assert after.whatsapp == "5511999999999"
        assert after.model_dump(exclude={"whatsapp"}) == before.model_dump(exclude={"whatsapp"})

    @pytest.mark.asyncio
    async def test_save_over_legacy_scalars_returns_record(self, config_resolver, config_store):
        config_store.records["broker-pro"] = stored(
            "broker-pro", badges_customizados=123, whatsapp=["x"], instagram_url={"u": 1}
        )

        record = await config_resolver.save("broker-pro", {"creci": "98765-J"})

        assert record.creci == "98765-J"
        assert record.badges_customizados is None
        assert record.whatsapp is None
        assert config_store.records["broker-pro"]["creci"] == "98765-J"
        assert config_store.writes == 1

    @pytest.mark.asyncio
    async def test_first_save_creates_record(self, config_resolver, config_store):
        record = await config_resolver.save("broker-start", {"creci": "98765-J"})
        assert record.corretor_id == "broker-start"
        assert record.id
        assert config_store.records["broker-start"]["creci"] == "98765-J"

    @pytest.mark.asyncio
    async def test_ineligible_template_rejected_and_unchanged(self, config_resolver, config_store):
        config_store.records["broker-start"] = stored("broker-start", template_id="start-template")

        with pytest.raises(PlanViolationError) as exc:
            await config_resolver.save("broker-start", {"template_id": "authority-template"})

        assert exc.value.required_plan == "lobby_authority"
        assert exc.value.to_dict()["upgrade_required"] is True
        assert config_store.records["broker-start"]["template_id"] == "start-template"
        assert config_store.writes == 0

    @pytest.mark.asyncio
    async def test_unknown_template_not_found(self, config_resolver):
        with pytest.raises(NotFoundError):
            await config_resolver.save("broker-pro", {"template_id": "nope"})

    @pytest.mark.asyncio
    async def test_eligible_template_saved(self, config_resolver):
        await config_resolver.save("broker-pro", {"template_id": "pro-template"})
        resolved = await config_resolver.resolve("broker-pro")
        assert resolved.template_id == "pro-template"
        assert resolved.template_fallback is False

    @pytest.mark.asyncio
    async def test_headline_requires_edit_headline(self, config_resolver, config_store):
        with pytest.raises(PlanViolationError) as exc:
            await config_resolver.save("broker-start", {"headline_principal": "Nova"})
        assert exc.value.feature == "edit_headline"
        assert "broker-start" not in config_store.records

    @pytest.mark.asyncio
    async def test_clearing_gated_field_allowed_without_capability(self, config_resolver, config_store):
        config_store.records["broker-start"] = stored("broker-start", headline_principal="Antiga")
        await config_resolver.save("broker-start", {"headline_principal": ""})
        assert config_store.records["broker-start"]["headline_principal"] is None

    @pytest.mark.asyncio
    async def test_badges_require_custom_badges(self, config_resolver):
        with pytest.raises(PlanViolationError):
            await config_resolver.save("broker-pro", {"badges_customizados": ["Selo"]})
        await config_resolver.save("broker-authority", {"badges_customizados": ["Selo"]})

    @pytest.mark.asyncio
    async def test_too_many_landing_pages_rejected(self, config_resolver):
        pages = [f"p{i}" for i in range(5)]
        with pytest.raises(PlanViolationError):
            await config_resolver.save("broker-pro", {"config_extra": {"landing_pages": pages}})
        record = await config_resolver.save("broker-pro", {"config_extra": {"landing_pages": pages[:4]}})
        assert record.config_extra.landing_pages == tuple(pages[:4])

    @pytest.mark.asyncio
    async def test_custom_landing_pages_need_capability(self, config_resolver, config_store):
        with pytest.raises(PlanViolationError) as exc:
            await config_resolver.save("broker-start", {"config_extra": {"landing_pages": ["promo"]}})
        assert exc.value.feature == "custom_landing_pages"
        assert exc.value.required_plan == "lobby_pro"
        assert config_store.writes == 0

        await config_resolver.save("broker-start", {"config_extra": {"landing_pages": []}})
        resolved = await config_resolver.resolve("broker-start")
        assert resolved.landing_pages == ()
        assert resolved.landing_page_count == 1

    @pytest.mark.asyncio
    async def test_empty_strings_stored_as_null(self, config_resolver, config_store):
        await config_resolver.save("broker-pro", {"whatsapp": "", "instagram_url": "  "})
        record = config_store.records["broker-pro"]
        assert record["whatsapp"] is None
        assert record["instagram_url"] is None

    @pytest.mark.asyncio
    async def test_all_field_errors_reported_together(self, config_resolver, config_store):
        with pytest.raises(ValidationError) as exc:
            await config_resolver.save("broker-pro", {
                "corretor_id": "someone-else",
                "id": "x",
                "cor_favorita": "azul",
                "email_contato": "not-an-email",
                "whatsapp": "abc",
            })
        errors = exc.value.field_errors
        assert set(errors) == {"corretor_id", "id", "cor_favorita", "email_contato", "whatsapp"}
        assert errors["corretor_id"] == "Field is immutable"
        assert config_store.writes == 0

    @pytest.mark.asyncio
    async def test_form_config_normalized_on_save(self, config_resolver, config_store):
        await config_resolver.save("broker-pro", {"form_config": {
            "titulo": "Fale comigo",
            "campos": {"income": {"visivel": False, "obrigatorio": True}},
        }})
        saved = config_store.records["broker-pro"]["form_config"]
        assert saved["schema_version"] == 1
        assert saved["campos"]["income"] == {"visivel": False, "obrigatorio": False}

    @pytest.mark.asyncio
    async def test_form_config_too_long_title_rejected(self, config_resolver):
        with pytest.raises(ValidationError) as exc:
            await config_resolver.save("broker-pro", {"form_config": {"titulo": "x" * 101}})
        assert "form_config.titulo" in exc.value.field_errors

    @pytest.mark.asyncio
    async def test_save_is_audited_with_diff(self, config_store, template_registry, entitlement_resolver):
        db = MagicMock()
        db.audit_logs.insert_one = AsyncMock()
        resolver = ConfigResolver(config_store, template_registry, entitlement_resolver, audit_db=db)
        config_store.records["broker-pro"] = stored("broker-pro", creci="1")

        await resolver.save("broker-pro", {"creci": "2"}, actor_id="broker-pro")

        doc = db.audit_logs.insert_one.await_args.args[0]
        assert doc["action"] == "LANDING_CONFIG_UPDATED"
        assert doc["metadata"]["diff"] == {"changed": {"creci": {"from": "1", "to": "2"}}}


class TestTemplateGallery:

    @pytest.mark.asyncio
    async def test_gallery_lock_state(self, config_resolver):
        gallery = {t["id"]: t for t in await config_resolver.list_templates_for("partner-pro")}
        assert gallery["start-template"]["selected"] is True
        assert gallery["pro-template"]["allowed"] is True
        assert gallery["authority-template"]["allowed"] is False
        assert gallery["authority-template"]["required_plan"] == "partner_authority"
