"""Tests for signing links and the outbound mail queue."""

import pytest

from lighthouse_sign.distribution import (
    MailGateway,
    link_for,
    render_invitation_html,
    signing_links,
)
from lighthouse_sign.errors import MailQueueError, NoEmailError, NoSigningLinkError, PersistenceError
from lighthouse_sign.models_template import SignerRole

from conftest import BASE_URL


class TestLinks:
    def test_token_goes_in_fragment(self, agreement):
        pir = agreement.signer_for(SignerRole.PIR)
        assert link_for(pir, BASE_URL) == f"{BASE_URL}#{pir.token}"

    def test_glrs_has_no_link(self, agreement):
        with pytest.raises(NoSigningLinkError):
            link_for(agreement.signer_for(SignerRole.GLRS), BASE_URL)

    def test_signing_links_in_order(self, agreement):
        links = signing_links(agreement, BASE_URL)
        assert [sl.role for sl in links] == [SignerRole.PIR, SignerRole.FAMILY]
        assert links[0].email == "alex@example.com"
        assert links[1].link.endswith(agreement.signer_for(SignerRole.FAMILY).token)


class TestEmailBodies:
    def test_values_are_escaped(self):
        html = render_invitation_html(
            recipient_name="<script>alert(1)</script>",
            document_title='Fees & "Terms"',
            signing_link="https://x.test/sign.html#abc",
            sender_name="GLRS",
            expiration_date="March 16, 2026",
            organization="Guiding Light",
        )
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "Fees &amp; &quot;Terms&quot;" in html
        assert 'href="https://x.test/sign.html#abc"' in html


class TestMailGateway:
    def test_invitation_queued(self, tmp_store, agreement):
        gateway = MailGateway(tmp_store, base_url=BASE_URL)
        pir = agreement.signer_for(SignerRole.PIR)
        msg = gateway.queue_invitation(agreement, pir, sender_name="Jordan")
        assert msg.to == "alex@example.com"
        assert msg.subject == 'Action Required: Please sign "Recovery Support Agreement"'
        assert f"{BASE_URL}#{pir.token}" in msg.message.html
        assert "March 16, 2026" in msg.message.html
        assert [m.id for m in tmp_store.list_mail()] == [msg.id]

    def test_reminder_subject(self, tmp_store, agreement):
        gateway = MailGateway(tmp_store, base_url=BASE_URL)
        msg = gateway.queue_reminder(agreement, agreement.signer_for(SignerRole.FAMILY))
        assert msg.subject == 'Reminder: Please sign "Recovery Support Agreement"'
        assert msg.to == "sam@example.com"

    def test_no_email(self, tmp_store, agreement):
        gateway = MailGateway(tmp_store)
        with pytest.raises(NoEmailError):
            gateway.queue_invitation(agreement, agreement.signer_for(SignerRole.GLRS))

    def test_queue_failure_leaves_agreement_alone(self, tmp_store, agreement, monkeypatch):
        gateway = MailGateway(tmp_store)
        before = agreement.model_dump_json()

        def fail(_message):
            raise PersistenceError("disk full")

        monkeypatch.setattr(tmp_store, "enqueue_mail", fail)
        with pytest.raises(MailQueueError):
            gateway.queue_invitation(agreement, agreement.signer_for(SignerRole.PIR))
        assert agreement.model_dump_json() == before
