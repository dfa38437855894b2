"""Tests for the command-line interface."""

import pytest
from click.testing import CliRunner

from lighthouse_sign.cli import main
from lighthouse_sign.models_template import SignerRole

from conftest import TENANT, make_forms


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def sent(service, three_party_template):
    service.save_template(three_party_template)
    return service.send_agreement(three_party_template.id, make_forms(), sender="Jordan")


def _run(runner, service, *args):
    return runner.invoke(main, list(args), obj={"service": service})


class TestCli:
    def test_templates(self, runner, service, three_party_template):
        service.save_template(three_party_template)
        result = _run(runner, service, "templates")
        assert result.exit_code == 0
        assert three_party_template.id[:8] in result.output

    def test_templates_empty(self, runner, service):
        result = _run(runner, service, "templates")
        assert "No templates found" in result.output

    def test_list_shows_counts(self, runner, service, sent):
        result = _run(runner, service, "list", "--tenant", TENANT)
        assert result.exit_code == 0
        assert "sent: 1" in result.output
        assert sent.id[:8] in result.output

    def test_list_filter(self, runner, service, sent):
        result = _run(runner, service, "list", "--tenant", TENANT, "--status", "voided")
        assert "No agreements found" in result.output

    def test_show(self, runner, service, sent):
        result = _run(runner, service, "show", sent.id)
        assert result.exit_code == 0
        assert "Alex Rivera" in result.output

    def test_show_missing(self, runner, service):
        result = _run(runner, service, "show", "nope")
        assert result.exit_code == 1
        assert "Agreement not found" in result.output

    def test_audit(self, runner, service, sent):
        result = _run(runner, service, "audit", sent.id)
        assert result.exit_code == 0
        assert "sent" in result.output

    def test_link(self, runner, service, sent):
        result = _run(runner, service, "link", sent.id)
        token = service.get_agreement(sent.id).signer_for(SignerRole.PIR).token
        assert token in result.output

    def test_remind(self, runner, service, sent):
        result = _run(runner, service, "remind", sent.id, "--role", "family")
        assert result.exit_code == 0
        assert "sam@example.com" in result.output

    def test_void(self, runner, service, sent):
        result = _run(runner, service, "void", sent.id, "--actor", "Jordan", "--yes")
        assert result.exit_code == 0
        assert service.get_agreement(sent.id).status.value == "voided"
        again = _run(runner, service, "void", sent.id, "--actor", "Jordan", "--yes")
        assert again.exit_code == 1

    def test_export_not_completed(self, runner, service, sent):
        result = _run(runner, service, "export", sent.id)
        assert result.exit_code == 1
        assert "only completed" in result.output
