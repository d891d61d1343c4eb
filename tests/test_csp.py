"""Tests for the Content-Security-Policy builder."""

from vipbar.core.csp import CSPBuilder, build_csp


def _directives(policy: str) -> dict[str, list[str]]:
    parsed = {}
    for part in policy.split("; "):
        name, *sources = part.split(" ")
        parsed[name] = sources
    return parsed


class TestCSPBuilder:
    def test_defaults(self):
        parsed = _directives(CSPBuilder().build())
        assert parsed["default-src"] == ["'self'"]
        assert parsed["object-src"] == ["'none'"]
        assert parsed["frame-ancestors"] == ["'none'"]

    def test_add_directive_deduplicates(self):
        policy = CSPBuilder().add_directive("img-src", ["https:", "https://cdn.example"]).build()
        assert _directives(policy)["img-src"] == ["'self'", "data:", "https:", "https://cdn.example"]

    def test_remove_directive(self):
        policy = CSPBuilder().remove_directive("media-src").build()
        assert "media-src" not in _directives(policy)

    def test_nonce_for_inline_scripts(self):
        policy = CSPBuilder().set_nonce("abc123").allow_inline_scripts().build()
        assert "'nonce-abc123'" in _directives(policy)["script-src"]
        assert "'unsafe-inline'" not in _directives(policy)["script-src"]

    def test_inline_scripts_without_nonce(self):
        policy = CSPBuilder().allow_inline_scripts().build()
        assert "'unsafe-inline'" in _directives(policy)["script-src"]

    def test_strict_mode(self):
        parsed = _directives(CSPBuilder().strict_mode().build())
        assert parsed["default-src"] == ["'none'"]
        assert parsed["upgrade-insecure-requests"] == []
        assert "'unsafe-inline'" not in parsed["style-src"]

    def test_connect_and_fonts(self):
        parsed = _directives(
            CSPBuilder().allow_connect(["https://api.example"]).allow_google_fonts().build()
        )
        assert "https://api.example" in parsed["connect-src"]
        assert "https://fonts.gstatic.com" in parsed["font-src"]
        assert "https://fonts.googleapis.com" in parsed["style-src"]


class TestBuildCsp:
    def test_production_is_strict(self):
        parsed = _directives(build_csp(is_production=True))
        assert parsed["default-src"] == ["'none'"]
        assert "'unsafe-eval'" not in parsed["script-src"]

    def test_development_allows_dev_tooling(self):
        parsed = _directives(build_csp(is_production=False))
        assert "'unsafe-eval'" in parsed["script-src"]
        assert "ws:" in parsed["connect-src"]
