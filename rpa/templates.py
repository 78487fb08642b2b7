"""
HTML page rendering.

Every page template extends ``base.html``; pages are looked up by file name.
"""

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape

__all__ = ["TemplateRenderer", "TemplateError", "TemplateNotFound"]


class TemplateRenderer:
    def __init__(self, templates_path: str):
        self.templates_path = templates_path
        self.env = Environment(
            loader=FileSystemLoader(templates_path),
            autoescape=select_autoescape(["html"]),
        )

    def exists(self, name: str) -> bool:
        try:
            self.env.loader.get_source(self.env, name)
        except TemplateNotFound:
            return False
        return True

    def render(self, name: str, data: dict) -> str:
        """Render a page.

        Raises TemplateNotFound for unknown names and TemplateError for
        templates that fail to compile or render.
        """
        return self.env.get_template(name).render(**data)
