"""Content-Security-Policy builder."""


class CSPBuilder:
    """Chainable builder for a Content-Security-Policy header value.

    Example:
        CSPBuilder().strict_mode().allow_image_domains(["https://cdn.example"]).build()
    """

    def __init__(self) -> None:
        self.directives: dict[str, list[str]] = {
            "default-src": ["'self'"],
            "script-src": ["'self'"],
            "style-src": ["'self'", "'unsafe-inline'"],
            "img-src": ["'self'", "data:", "https:"],
            "font-src": ["'self'", "data:"],
            "connect-src": ["'self'"],
            "media-src": ["'self'"],
            "object-src": ["'none'"],
            "child-src": ["'self'"],
            "frame-src": ["'none'"],
            "worker-src": ["'self'"],
            "frame-ancestors": ["'none'"],
            "form-action": ["'self'"],
            "base-uri": ["'self'"],
            "manifest-src": ["'self'"],
        }
        self.nonce: str | None = None

    def set_nonce(self, nonce: str) -> "CSPBuilder":
        self.nonce = nonce
        return self

    def add_directive(self, directive: str, sources: list[str]) -> "CSPBuilder":
        values = self.directives.setdefault(directive, [])
        for source in sources:
            if source not in values:
                values.append(source)
        return self

    def remove_directive(self, directive: str) -> "CSPBuilder":
        self.directives.pop(directive, None)
        return self

    def allow_inline_scripts(self) -> "CSPBuilder":
        if self.nonce:
            return self.add_directive("script-src", [f"'nonce-{self.nonce}'"])
        return self.add_directive("script-src", ["'unsafe-inline'"])

    def allow_connect(self, origins: list[str]) -> "CSPBuilder":
        return self.add_directive("connect-src", origins)

    def allow_image_domains(self, domains: list[str]) -> "CSPBuilder":
        return self.add_directive("img-src", domains)

    def allow_google_fonts(self) -> "CSPBuilder":
        self.add_directive("font-src", ["https://fonts.gstatic.com"])
        return self.add_directive("style-src", ["https://fonts.googleapis.com"])

    def strict_mode(self) -> "CSPBuilder":
        """Replace everything with a deny-by-default policy."""
        self.directives = {
            "default-src": ["'none'"],
            "script-src": ["'self'"],
            "style-src": ["'self'"],
            "img-src": ["'self'", "data:"],
            "font-src": ["'self'"],
            "connect-src": ["'self'"],
            "media-src": ["'none'"],
            "object-src": ["'none'"],
            "child-src": ["'none'"],
            "frame-src": ["'none'"],
            "worker-src": ["'none'"],
            "frame-ancestors": ["'none'"],
            "form-action": ["'self'"],
            "base-uri": ["'self'"],
            "upgrade-insecure-requests": [],
        }
        return self

    def development_mode(self) -> "CSPBuilder":
        """Relax script and connect sources for hot reload and dev tooling."""
        self.add_directive("script-src", ["'unsafe-eval'", "'unsafe-inline'"])
        self.add_directive("style-src", ["'unsafe-inline'"])
        return self.add_directive("connect-src", ["ws:", "wss:", "http:", "https:"])

    def build(self) -> str:
        parts = []
        for directive, sources in self.directives.items():
            parts.append(f"{directive} {' '.join(sources)}" if sources else directive)
        return "; ".join(parts)


def build_csp(is_production: bool) -> str:
    """Policy for the current environment."""
    builder = CSPBuilder()
    if is_production:
        builder.strict_mode()
    else:
        builder.development_mode()
    return builder.allow_google_fonts().build()
