"""Tests for PDF export and the HTTP renderer client."""

import json

import httpx
import pytest
import respx
from tenacity import RetryCallState, wait_none

from lighthouse_sign.errors import NotCompletedError, RendererError
from lighthouse_sign.export import RETRY_WAIT, HttpPdfRenderer, build_renderer, export_payload
from lighthouse_sign.models_template import SignerRole

from conftest import NOW

RENDER_URL = "https://render.example.org/pdf"


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(HttpPdfRenderer._post.retry, "wait", wait_none())


@pytest.fixture
def completed(workflow, agreement):
    a = workflow.sign(agreement, SignerRole.PIR, values={"pir_sig": "Alex"}, now=NOW)
    a = workflow.sign(a, SignerRole.FAMILY, values={"fam_sig": "Sam"}, now=NOW)
    return workflow.sign(a, SignerRole.GLRS, values={"glrs_sig": "Jordan"}, now=NOW)


@pytest.fixture
def renderer():
    with httpx.Client() as client:
        yield HttpPdfRenderer(client, RENDER_URL)


class TestPayload:
    def test_tokens_are_stripped(self, completed):
        payload = export_payload(completed)
        text = json.dumps(payload)
        for token in completed.signer_tokens:
            assert token not in text
        assert "signerTokens" not in payload
        assert payload["documentTitle"] == "Recovery Support Agreement"

    def test_rendered_blocks(self, completed):
        rendered = {b["id"]: b["text"] for b in export_payload(completed)["renderedBlocks"]}
        assert rendered["pir_sig"] == "Signature (PIR): signed"
        assert rendered["sec1"] == "1. Terms"


class TestHttpPdfRenderer:
    def test_render(self, renderer, completed, sample_pdf):
        with respx.mock:
            route = respx.post(RENDER_URL).mock(
                return_value=httpx.Response(200, content=sample_pdf)
            )
            assert renderer.render(completed) == sample_pdf
        body = json.loads(route.calls.last.request.content)
        assert body["id"] == completed.id

    def test_not_completed_never_calls_renderer(self, renderer, agreement):
        with respx.mock:
            route = respx.post(RENDER_URL).mock(return_value=httpx.Response(200))
            with pytest.raises(NotCompletedError):
                renderer.render(agreement)
            assert not route.called

    def test_retries_transient_errors(self, renderer, completed, sample_pdf):
        with respx.mock:
            route = respx.post(RENDER_URL).mock(
                side_effect=[
                    httpx.Response(503),
                    httpx.ConnectError("refused"),
                    httpx.Response(200, content=sample_pdf),
                ]
            )
            assert renderer.render(completed) == sample_pdf
            assert route.call_count == 3

    def test_gives_up_after_persistent_failure(self, renderer, completed):
        with respx.mock:
            route = respx.post(RENDER_URL).mock(return_value=httpx.Response(502))
            with pytest.raises(RendererError):
                renderer.render(completed)
            assert route.call_count == 4

    def test_client_error_not_retried(self, renderer, completed):
        with respx.mock:
            route = respx.post(RENDER_URL).mock(return_value=httpx.Response(400, text="bad"))
            with pytest.raises(RendererError):
                renderer.render(completed)
            assert route.call_count == 1

    def test_unreachable(self, renderer, completed):
        with respx.mock:
            respx.post(RENDER_URL).mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(RendererError, match="unreachable"):
                renderer.render(completed)

    def test_non_pdf_response(self, renderer, completed):
        with respx.mock:
            respx.post(RENDER_URL).mock(return_value=httpx.Response(200, content=b"<html>"))
            with pytest.raises(RendererError):
                renderer.render(completed)


class TestBuildRenderer:
    def test_none_without_url(self):
        assert build_renderer(None) is None
        assert build_renderer("") is None

    def test_http_renderer(self):
        assert isinstance(build_renderer(RENDER_URL), HttpPdfRenderer)


class TestRetryWait:
    @pytest.mark.parametrize("attempt, low, high", [(1, 0.5, 1.0), (3, 2.0, 2.5), (10, 10.0, 10.5)])
    def test_backoff_is_capped_with_jitter(self, attempt, low, high):
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = attempt
        assert low <= RETRY_WAIT(state) <= high
