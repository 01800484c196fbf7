"""Zone artifact rendering.

Zone definitions (zonecfg command files) and system configuration profiles
are Jinja2 templates rendered against the settings and the in-progress
provisioning state.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jinja2

from zoneagent.errors import ConfigurationError, ResourceNotFoundError

if TYPE_CHECKING:
    from zoneagent.state import ProvisioningState

logger = logging.getLogger(__name__)

# Default templates shipped with the package
TEMPLATE_DIR = Path(__file__).parent / "templates"

_BLANK_LINE_RE = re.compile(r"^[ \t\r\f\v]*(?:\n|$)", re.MULTILINE)


def strip_blank_lines(text: str) -> str:
    """Remove lines containing only whitespace.

    zonecfg rejects blank lines in command files.
    """
    return _BLANK_LINE_RE.sub("", text)


class TemplateRenderer:
    """Render templates found under a root directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self._env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def resolve(self, template_path: Path | str) -> Path:
        """Resolve a template path against the root.

        Raises:
            ResourceNotFoundError: if the template file does not exist
        """
        path = (self.root / template_path).resolve()
        if not path.is_file():
            raise ResourceNotFoundError(f"Could not find zone template {path}", str(path))
        return path

    def render_text(self, template_path: Path | str, context: dict[str, Any]) -> str:
        path = self.resolve(template_path)
        try:
            source = path.read_text()
        except OSError as e:
            raise ConfigurationError(f"Failed to read zone template {path}: {e}") from e
        try:
            output = self._env.from_string(source).render(**context)
        except jinja2.TemplateSyntaxError as e:
            raise ConfigurationError(f"Syntax error in {path} line {e.lineno}: {e.message}") from e
        except jinja2.TemplateError as e:
            raise ConfigurationError(f"Failed to render {path}: {e}") from e
        return strip_blank_lines(output)

    def render(self, template_path: Path | str, output_path: Path | str, context: dict[str, Any]) -> None:
        """Render a template to output_path, byte for byte."""
        text = self.render_text(template_path, context)
        output_path = Path(output_path)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "wb") as f:
                f.write(text.encode())
        except OSError as e:
            raise ConfigurationError(f"Failed to write {output_path}: {e}") from e
        debug_file(output_path)

    def render_artifact(
        self,
        state: ProvisioningState,
        field: str,
        template_path: Path | str,
        output_path: Path | str,
        context: dict[str, Any],
    ) -> bool:
        """Render once, recording output_path in state field.

        Returns False without rendering if the field is already set.
        """
        if getattr(state, field) is not None:
            logger.debug(f"{field} already rendered at {getattr(state, field)}")
            return False
        self.render(template_path, output_path, context)
        state.update(**{field: str(output_path)})
        logger.info(f"Rendered {template_path} to {output_path}")
        return True


def debug_file(path: Path) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return

    logger.debug("------------")
    for line in path.read_text().splitlines():
        logger.debug(line)
    logger.debug("------------")
