"""
Tests for install_catalog -- idempotent upsert of template rows by code.
"""

from sqlalchemy import select

from dossier_config.installer import install_catalog
from dossier_config.loader import load_bundled_catalog, parse_catalog
from dossier_kernel.domain.identity import SYSTEM_CALLER_ID
from dossier_kernel.models.template import (
    Product,
    ProductStep,
    StepDocumentType,
    StepField,
    StepTemplate,
)

VALID_INTAKE = {"company_name": "Acme Holdings", "email": "owner@acme.test"}


def product_step_codes(session, product_code: str) -> list[str]:
    return list(
        session.execute(
            select(StepTemplate.code)
            .join(ProductStep, ProductStep.step_id == StepTemplate.id)
            .join(Product, Product.id == ProductStep.product_id)
            .where(Product.code == product_code)
            .order_by(ProductStep.position)
        ).scalars()
    )


def field_keys(session, step_code: str) -> list[str]:
    return list(
        session.execute(
            select(StepField.field_key)
            .join(StepTemplate, StepTemplate.id == StepField.step_id)
            .where(StepTemplate.code == step_code)
            .order_by(StepField.position)
        ).scalars()
    )


class TestInstall:
    def test_bundled_catalog_installs(self, session):
        summary = install_catalog(session, load_bundled_catalog("llc_formation"), SYSTEM_CALLER_ID)

        assert summary.created["products"] == 1
        assert summary.created["steps"] == 6
        assert summary.created["document_types"] == 5
        assert product_step_codes(session, "LLC_FORMATION") == [
            "personal_information",
            "company_information",
            "identity_documents",
            "llc_filing",
            "ein_application",
            "bank_account",
        ]

    def test_install_is_logged_with_counts(self, session, catalog_data, captured_logs):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        record = next(r for r in captured_logs() if r["message"] == "catalog_installed")
        assert record["catalog_id"] == "test_catalog"
        assert record["created_count"]["steps"] == 3
        assert record["updated_count"] == {}
        assert record["removed_count"] == {}

    def test_second_install_changes_nothing(self, session, catalog_data):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        assert not summary.changed

    def test_label_change_updates_in_place(self, session, catalog_data):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)
        step_id = session.execute(
            select(StepTemplate.id).where(StepTemplate.code == "intake")
        ).scalar_one()

        catalog_data["steps"][0]["label"] = "Company details"
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        assert summary.updated == {"steps": 1}
        step = session.execute(select(StepTemplate).where(StepTemplate.code == "intake")).scalar_one()
        assert step.id == step_id
        assert step.label == "Company details"
        assert step.updated_by_id == SYSTEM_CALLER_ID


class TestProductSteps:
    def test_reorder(self, session, catalog_data):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        steps = catalog_data["products"][0]["steps"]
        steps[0], steps[1] = steps[1], steps[0]
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        assert summary.updated["product_steps"] == 2
        assert product_step_codes(session, "TEST_LLC") == ["identity", "intake", "filing"]

    def test_removed_step_and_document_requirement(self, session, catalog_data):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        catalog_data["products"][0]["steps"] = ["intake", "identity"]
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        assert summary.removed == {"product_steps": 1, "step_document_types": 1}
        assert product_step_codes(session, "TEST_LLC") == ["intake", "identity"]
        assert session.execute(select(StepDocumentType)).scalars().all() == []
        # the template itself is kept
        assert session.execute(
            select(StepTemplate).where(StepTemplate.code == "filing")
        ).scalar_one_or_none() is not None


class TestStepFields:
    def test_new_field_is_appended(self, session, catalog_data):
        install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        catalog_data["steps"][0]["fields"].append(
            {"key": "phone", "label": "Phone", "type": "phone"}
        )
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        assert summary.created == {"step_fields": 1}
        assert field_keys(session, "intake") == ["company_name", "email", "notes", "phone"]

    def test_field_with_values_is_kept(
        self, session, catalog_data, dossier, instance_of, step_service, client_caller,
        captured_logs,
    ):
        step_service.submit_step(instance_of(dossier, "intake").id, dict(VALID_INTAKE), client_caller)

        catalog_data["steps"][0]["fields"] = [
            f for f in catalog_data["steps"][0]["fields"] if f["key"] == "company_name"
        ]
        summary = install_catalog(session, parse_catalog(catalog_data), SYSTEM_CALLER_ID)

        # notes had no values and is removed; email has one and stays
        assert summary.removed == {"step_fields": 1}
        assert field_keys(session, "intake") == ["company_name", "email"]
        kept = [r for r in captured_logs() if r["message"] == "catalog_field_kept_in_use"]
        assert [r["field_key"] for r in kept] == ["email"]
