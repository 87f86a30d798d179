from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jinja2 import (
    BaseLoader,
    Environment,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateSyntaxError,
)

from .errors import TemplateParseError

DEFAULT_TEMPLATE = """
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml"{% if epub_version_3 %} xmlns:epub="http://www.idpf.org/2007/ops"{% endif %}>
  <head>
    <title>{{ title }}</title>
    <meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
    <link rel="stylesheet" type="text/css" href="{{ stylesheet }}" />
  </head>
  <body>
{{ body|safe }}
  </body>
</html>
""".strip()

DEFAULT_CSS = """
body {
  font-family: serif;
  line-height: 1.4;
  margin: 0 2%;
}

h1, h2, h3, h4, h5, h6 {
  font-family: sans-serif;
  page-break-after: avoid;
}

pre, code {
  font-family: monospace;
  font-size: 0.9em;
}

pre {
  white-space: pre-wrap;
  padding: 0.5em;
  border: 1px solid #ccc;
}

img {
  max-width: 100%;
}

table {
  border-collapse: collapse;
}

th, td {
  border: 1px solid #999;
  padding: 0.2em 0.5em;
}

blockquote {
  margin-left: 1em;
  padding-left: 0.5em;
  border-left: 3px solid #ccc;
}

.footnote-reference a {
  text-decoration: none;
}

.footnotes {
  margin-top: 2em;
  border-top: 1px solid #ccc;
  font-size: 0.9em;
}

.footnote-definition-label {
  font-weight: bold;
}
""".lstrip()


@dataclass(frozen=True)
class ChapterTemplate:
    template: Template

    def render(
        self,
        title: str,
        body: str,
        stylesheet: str,
        epub_version_3: bool,
        **extra: Any,
    ) -> str:
        context: Dict[str, Any] = {
            "title": title,
            "body": body,
            "stylesheet": stylesheet,
            "epub_version_3": epub_version_3,
            **extra,
        }
        try:
            return str(self.template.render(**context))
        except TemplateError as exc:
            raise TemplateParseError(f"Unable to render chapter '{title}': {exc}") from exc


def create_environment() -> Environment:
    return Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=True)


def compile_template(source: Optional[str] = None) -> ChapterTemplate:
    """Compile a chapter page template, the built-in one when ``source`` is None."""
    env = create_environment()
    try:
        template = env.from_string(source if source is not None else DEFAULT_TEMPLATE)
    except TemplateSyntaxError as exc:
        raise TemplateParseError(f"Invalid chapter template (line {exc.lineno}): {exc}") from exc
    return ChapterTemplate(template=template)
