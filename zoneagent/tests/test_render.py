"""Unit tests for zone artifact rendering."""

from xml.etree import ElementTree

import pytest

from zoneagent.errors import ConfigurationError, ResourceNotFoundError
from zoneagent.render import TEMPLATE_DIR, TemplateRenderer, strip_blank_lines
from zoneagent.state import ProvisioningState


@pytest.fixture
def renderer(tmp_path):
    return TemplateRenderer(tmp_path)


class TestStripBlankLines:
    """Tests for blank line removal."""

    def test_removes_whitespace_only_lines(self):
        text = "create -b\n\n   \nset brand=solaris\n\t\nend\n"
        assert strip_blank_lines(text) == "create -b\nset brand=solaris\nend\n"

    def test_preserves_order_and_content(self):
        text = "c\n\n  b  \n\na\n"
        result = strip_blank_lines(text)
        assert result.splitlines() == ["c", "  b  ", "a"]
        assert all(line.strip() for line in result.splitlines())

    def test_trailing_blank_without_newline(self):
        assert strip_blank_lines("a\n   ") == "a\n"

    def test_crlf_blank_lines(self):
        assert strip_blank_lines("a\r\n\r\nb\r\n") == "a\r\nb\r\n"


class TestTemplateRenderer:
    """Tests for TemplateRenderer.render()."""

    def test_render_interpolates_and_strips(self, renderer, tmp_path):
        (tmp_path / "zone.cfg.j2").write_text(
            "create -b\n\nset zonepath=/zones/{{ zone_name }}\n{% if false %}\nskipped\n{% endif %}\ncommit\n"
        )
        out = tmp_path / "out" / "zone.cfg"
        renderer.render("zone.cfg.j2", out, {"zone_name": "z1"})
        assert out.read_bytes() == b"create -b\nset zonepath=/zones/z1\ncommit\n"

    def test_absolute_template_path(self, renderer, tmp_path):
        template = tmp_path / "elsewhere" / "t.j2"
        template.parent.mkdir()
        template.write_text("{{ value }}\n")
        out = tmp_path / "t.out"
        renderer.render(template, out, {"value": 42})
        assert out.read_text() == "42\n"

    def test_missing_template(self, renderer, tmp_path):
        with pytest.raises(ResourceNotFoundError) as exc_info:
            renderer.render("nope.j2", tmp_path / "out", {})
        assert exc_info.value.path == str((tmp_path / "nope.j2").resolve())
        assert "Could not find zone template" in str(exc_info.value)

    def test_missing_template_is_configuration_error(self, renderer, tmp_path):
        with pytest.raises(ConfigurationError):
            renderer.render("nope.j2", tmp_path / "out", {})

    def test_syntax_error(self, renderer, tmp_path):
        (tmp_path / "bad.j2").write_text("{% if %}\n")
        with pytest.raises(ConfigurationError, match="Syntax error"):
            renderer.render("bad.j2", tmp_path / "out", {})

    def test_undefined_variable(self, renderer, tmp_path):
        (tmp_path / "t.j2").write_text("{{ missing }}\n")
        with pytest.raises(ConfigurationError):
            renderer.render("t.j2", tmp_path / "out", {})
        assert not (tmp_path / "out").exists()

    def test_debug_dump(self, renderer, tmp_path, caplog):
        (tmp_path / "t.j2").write_text("line one\nline two\n")
        with caplog.at_level("DEBUG", logger="zoneagent.render"):
            renderer.render("t.j2", tmp_path / "out", {})
        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["------------", "line one", "line two", "------------"]


class TestRenderArtifact:
    """Tests for render_artifact() idempotency."""

    def test_records_output_path(self, renderer, tmp_path):
        (tmp_path / "t.j2").write_text("x\n")
        state = ProvisioningState()
        out = tmp_path / "z.cfg"

        assert renderer.render_artifact(state, "zone_config_path", "t.j2", out, {}) is True
        assert state.zone_config_path == str(out)
        assert out.read_text() == "x\n"

    def test_skips_when_already_recorded(self, renderer, tmp_path):
        state = ProvisioningState(zone_config_path=str(tmp_path / "existing.cfg"))
        out = tmp_path / "z.cfg"

        # The template does not exist: rendering would fail if attempted
        assert renderer.render_artifact(state, "zone_config_path", "missing.j2", out, {}) is False
        assert not out.exists()
        assert state.zone_config_path == str(tmp_path / "existing.cfg")

    def test_failure_leaves_state_unset(self, renderer, tmp_path):
        state = ProvisioningState()
        with pytest.raises(ResourceNotFoundError):
            renderer.render_artifact(state, "zone_profile_path", "missing.j2", tmp_path / "z.xml", {})
        assert state.zone_profile_path is None


class TestDefaultTemplates:
    """The packaged templates render with the driver's context."""

    @pytest.fixture
    def context(self):
        return {
            "settings": None,
            "state": {},
            "zone_name": "suite-0123",
            "zone_port": 20222,
            "zone_ip": "192.168.128.17",
            "zone_gateway": "192.168.128.1",
            "zone_prefixlen": 24,
            "public_key": "ssh-rsa AAAA test_kitchen",
            "username": "kitchen",
        }

    def test_zone_config(self, renderer, tmp_path, context):
        out = tmp_path / "z.cfg"
        renderer.render(TEMPLATE_DIR / "zone.cfg.j2", out, context)
        lines = out.read_text().splitlines()
        assert lines[0] == "create -b"
        assert "set zonepath=/system/zones/suite-0123" in lines
        assert "set lower-link=auto" in lines
        assert lines[-1] == "commit"
        assert all(line.strip() for line in lines)

    def test_zone_profile(self, renderer, tmp_path, context):
        out = tmp_path / "z.xml"
        renderer.render(TEMPLATE_DIR / "profile.xml.j2", out, context)
        text = out.read_text()
        assert 'value="192.168.128.17/24"' in text
        assert 'value="192.168.128.1"' in text
        assert 'value="ssh-rsa AAAA test_kitchen"' in text
        assert 'name="login" value="kitchen"' in text
        assert all(line.strip() for line in text.splitlines())

    def test_zone_profile_escapes_attribute_values(self, renderer, tmp_path, context):
        """Key comments and login names may carry XML metacharacters."""
        context["public_key"] = 'ssh-rsa AAAA "ops" <ci> & test'
        context["username"] = "k&d"
        out = tmp_path / "z.xml"
        renderer.render(TEMPLATE_DIR / "profile.xml.j2", out, context)

        root = ElementTree.parse(out).getroot()
        assert root.find(".//value_node").get("value") == 'ssh-rsa AAAA "ops" <ci> & test'
        assert root.find(".//propval[@name='login']").get("value") == "k&d"
