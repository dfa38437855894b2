"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from lighthouse_sign.api import create_app, status_for
from lighthouse_sign.errors import (
    AgreementExpiredError,
    ConcurrentModificationError,
    InvalidFieldValueError,
    MailQueueError,
    NotYourTurnError,
    RendererError,
    TemplateNotFoundError,
)

from conftest import TENANT


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


@pytest.fixture
def template_id(client, three_party_template):
    resp = client.post(
        "/api/templates", json=three_party_template.model_dump(mode="json", by_alias=True)
    )
    assert resp.status_code == 201
    return resp.json()["id"]


SEND_BODY = {
    "sender": "Jordan Case",
    "signers": {
        "pir": {"name": "Alex Rivera", "email": "alex@example.com", "order": 0},
        "family": {"name": "Sam Rivera", "email": "sam@example.com", "order": 1},
        "glrs": {"name": "Jordan Case", "order": 2},
    },
}


@pytest.fixture
def sent(client, template_id):
    resp = client.post("/api/agreements", json={**SEND_BODY, "templateId": template_id})
    assert resp.status_code == 201
    return resp.json()


def _token(sent, role):
    return next(sl["link"].split("#", 1)[1] for sl in sent["signingLinks"] if sl["role"] == role)


class TestTemplates:
    def test_list_and_get(self, client, template_id):
        listed = client.get("/api/templates", params={"tenantId": TENANT, "sendable": True})
        assert [t["id"] for t in listed.json()] == [template_id]
        got = client.get(f"/api/templates/{template_id}").json()
        assert got["content"]["blocks"][2]["type"] == "signatureField"

    def test_missing(self, client):
        assert client.get("/api/templates/nope").status_code == 404


class TestAgreements:
    def test_send(self, sent):
        assert sent["status"] == "sent"
        assert sent["documentTitle"] == "Recovery Support Agreement"
        assert len(sent["signingLinks"]) == 2

    def test_send_validation_errors(self, client, template_id):
        body = {**SEND_BODY, "templateId": template_id}
        body["signers"] = {**SEND_BODY["signers"], "pir": {"name": "", "email": "bad"}}
        resp = client.post("/api/agreements", json=body)
        assert resp.status_code == 400
        assert resp.json()["errors"] == {
            "pir_name": "PIR name is required",
            "pir_email": "Invalid email format",
        }

    def test_list_get_counts_audit(self, client, sent):
        listed = client.get("/api/agreements", params={"tenantId": TENANT}).json()
        assert [a["id"] for a in listed] == [sent["id"]]
        assert client.get(f"/api/agreements/{sent['id']}").json()["tenantId"] == TENANT
        counts = client.get("/api/agreements/counts", params={"tenantId": TENANT}).json()
        assert counts["sent"] == 1 and counts["all"] == 1
        audit = client.get(f"/api/agreements/{sent['id']}/audit").json()
        assert audit[0]["action"] == "sent"

    def test_bad_status_filter(self, client, sent):
        resp = client.get("/api/agreements", params={"tenantId": TENANT, "status": "lost"})
        assert resp.status_code == 400

    def test_void_then_void_again(self, client, sent):
        url = f"/api/agreements/{sent['id']}/void"
        assert client.post(url, json={"actor": "Jordan"}).json()["status"] == "voided"
        assert client.post(url, json={"actor": "Jordan"}).status_code == 409

    def test_remind(self, client, sent):
        resp = client.post(f"/api/agreements/{sent['id']}/remind", json={"role": "family"})
        assert resp.status_code == 200
        assert resp.json()["to"] == "sam@example.com"

    def test_links(self, client, sent):
        links = client.get(f"/api/agreements/{sent['id']}/links").json()
        assert links == sent["signingLinks"]

    def test_missing_agreement(self, client):
        assert client.get("/api/agreements/nope").status_code == 404

    def test_staff_responses_carry_no_tokens(self, client, sent):
        tokens = [sl["link"].split("#", 1)[1] for sl in sent["signingLinks"]]
        responses = [
            client.get("/api/agreements", params={"tenantId": TENANT}),
            client.get(f"/api/agreements/{sent['id']}"),
            client.post(f"/api/agreements/{sent['id']}/void", json={"actor": "Jordan"}),
        ]
        for resp in responses:
            assert resp.status_code == 200
            for token in tokens:
                assert token not in resp.text
        listed = responses[0].json()[0]
        assert listed["signerTokens"] == []
        assert all(s["token"] is None for s in listed["signers"])


class TestSigning:
    def test_open(self, client, sent):
        resp = client.post("/api/sign/open", json={"token": _token(sent, "pir")})
        body = resp.json()
        assert body["role"] == "pir"
        assert body["turn"]["is_their_turn"] is True
        family = next(s for s in body["agreement"]["signers"] if s["role"] == "family")
        assert family["token"] is None

    def test_forged_token(self, client, sent):
        assert client.post("/api/sign/open", json={"token": "forged"}).status_code == 404

    def test_out_of_turn(self, client, sent):
        resp = client.post(
            "/api/sign", json={"token": _token(sent, "family"), "values": {"fam_sig": "S"}}
        )
        assert resp.status_code == 409
        assert "awaiting PIR" in resp.json()["detail"]

    def test_unknown_field(self, client, sent):
        resp = client.post(
            "/api/sign/fields", json={"token": _token(sent, "pir"), "values": {"glrs_sig": "x"}}
        )
        assert resp.status_code == 422

    def test_incomplete(self, client, sent):
        resp = client.post("/api/sign", json={"token": _token(sent, "pir")})
        assert resp.status_code == 400

    def test_full_flow(self, client, sent):
        r1 = client.post(
            "/api/sign", json={"token": _token(sent, "pir"), "values": {"pir_sig": "A"}}
        )
        assert r1.json()["nextSigner"] == "family"
        r2 = client.post(
            "/api/sign", json={"token": _token(sent, "family"), "values": {"fam_sig": "S"}}
        )
        assert r2.json()["agreement"]["status"] == "partially_signed"
        r3 = client.post(
            f"/api/agreements/{sent['id']}/sign",
            json={"actor": "Jordan Case", "values": {"glrs_sig": "J"}},
        )
        assert r3.json()["agreement"]["status"] == "completed"
        export = client.post(f"/api/agreements/{sent['id']}/export")
        assert export.status_code == 502
        assert client.get(f"/api/agreements/{sent['id']}/pdf").status_code == 404


class TestErrorMapping:
    @pytest.mark.parametrize(
        "exc, code",
        [
            (TemplateNotFoundError("t"), 404),
            (AgreementExpiredError("a"), 410),
            (InvalidFieldValueError("pir", {"f": "bad"}), 422),
            (NotYourTurnError("GLRS"), 409),
            (ConcurrentModificationError("a"), 409),
            (RendererError("down"), 502),
            (MailQueueError("full"), 503),
        ],
    )
    def test_status_codes(self, exc, code):
        assert status_for(exc) == code


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
