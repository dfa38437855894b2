"""Shared fixtures for Lighthouse Sign tests."""

from datetime import datetime, timedelta, timezone

import pytest

from lighthouse_sign.chain import ChainBuilder
from lighthouse_sign.distribution import MailGateway
from lighthouse_sign.models import SignerFormData
from lighthouse_sign.models_template import (
    DateFieldBlock,
    DropdownFieldBlock,
    ParagraphBlock,
    SectionBlock,
    SignatureFieldBlock,
    SignerRole,
    Template,
    TemplateContent,
    TextInputFieldBlock,
)
from lighthouse_sign.service import AgreementService
from lighthouse_sign.store import AgreementStore
from lighthouse_sign.workflow import AgreementWorkflow

TENANT = "glrs-west"
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
BASE_URL = "https://sign.example.org/sign.html"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_three_party_template(tenant_id: str = TENANT) -> Template:
    return Template(
        name="Recovery Support Agreement",
        tenant_id=tenant_id,
        content=TemplateContent(
            blocks=[
                SectionBlock(id="sec1", title="Terms", number="1"),
                ParagraphBlock(id="p1", content="The parties agree to the following."),
                SignatureFieldBlock(id="pir_sig", role=SignerRole.PIR),
                DateFieldBlock(id="pir_date", role=SignerRole.PIR),
                DropdownFieldBlock(
                    id="fam_rel",
                    role=SignerRole.FAMILY,
                    label="Relationship",
                    options=["Parent", "Sibling", "Spouse"],
                    required=False,
                ),
                TextInputFieldBlock(
                    id="fam_note", role=SignerRole.FAMILY, label="Note", max_length=10
                ),
                SignatureFieldBlock(id="fam_sig", role=SignerRole.FAMILY),
                SignatureFieldBlock(id="glrs_sig", role=SignerRole.GLRS),
            ]
        ),
    )


def make_pir_only_template(tenant_id: str = TENANT) -> Template:
    return Template(
        name="Consent",
        tenant_id=tenant_id,
        content=TemplateContent(
            blocks=[SignatureFieldBlock(id="pir_sig", role=SignerRole.PIR)]
        ),
    )


def make_forms() -> dict[SignerRole, SignerFormData]:
    return {
        SignerRole.PIR: SignerFormData(name="Alex Rivera", email="alex@example.com", order=0),
        SignerRole.FAMILY: SignerFormData(name="Sam Rivera", email="sam@example.com", order=1),
        SignerRole.GLRS: SignerFormData(name="Jordan Case", order=2),
    }


@pytest.fixture
def tmp_store(tmp_path):
    """Create a temporary AgreementStore."""
    return AgreementStore(base_dir=tmp_path)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def workflow():
    return AgreementWorkflow()


@pytest.fixture
def builder():
    return ChainBuilder()


@pytest.fixture
def three_party_template():
    return make_three_party_template()


@pytest.fixture
def pir_only_template():
    return make_pir_only_template()


@pytest.fixture
def forms():
    return make_forms()


@pytest.fixture
def agreement(builder, three_party_template, forms):
    """Freshly sent three-party agreement (pir -> family -> glrs)."""
    return builder.build_agreement(three_party_template, forms, sender="Jordan Case", now=NOW)


@pytest.fixture
def service(tmp_store, clock):
    """Service over a temporary store with a fixed clock and no renderer."""
    return AgreementService(
        tmp_store,
        gateway=MailGateway(tmp_store, base_url=BASE_URL),
        clock=clock,
    )


@pytest.fixture
def sample_pdf() -> bytes:
    """Minimal valid PDF bytes for testing."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
        b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
        b"trailer<</Size 3/Root 1 0 R>>\n"
        b"%%EOF"
    )
