"""Template store.

Templates are text snippets with ``{{variable}}`` placeholders. Variables are
discovered by scanning the content rather than declared up front.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from clipsync.protocols import KeyValueStore, LimitExceededError, ValidationError
from clipsync.types import Template, now_ms, utc_now

from .keys import TEMPLATES_KEY

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_TEMPLATES = [
    {
        "name": "Email Reply",
        "description": "Professional email response template",
        "content": (
            "Hi {{name}},\n\nThank you for your email. I'll review this and get back "
            "to you by {{date}}.\n\nBest regards,\n{{myname}}"
        ),
    },
    {
        "name": "Meeting Request",
        "description": "Schedule a meeting with someone",
        "content": (
            "Hi {{name}},\n\nI'd like to schedule a meeting to discuss {{topic}}. "
            "Are you available on {{date}} at {{time}}?\n\nPlease let me know if this "
            "works for you.\n\nBest regards,\n{{myname}}"
        ),
    },
]


def extract_variables(content: str) -> List[str]:
    """Placeholder names in first-occurrence order, without duplicates."""
    seen: Dict[str, None] = {}
    for match in VARIABLE_PATTERN.finditer(content):
        seen.setdefault(match.group(1), None)
    return list(seen)


def variable_default(name: str, now: Optional[datetime] = None) -> str:
    """Fallback value for well-known placeholders."""
    now = now or datetime.now()
    defaults = {
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M"),
        "myname": "Your Name",
    }
    return defaults.get(name, "")


def fill_template(content: str, values: Dict[str, str], now: Optional[datetime] = None) -> str:
    """Substitute every placeholder with its value, or its default when missing."""

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        return values.get(name) or variable_default(name, now)

    return VARIABLE_PATTERN.sub(substitute, content)


class TemplateStore:
    """Persisted list of templates with a tier ceiling.

    Args:
        kv: Backend the templates are persisted to.
        max_templates: Ceiling on the number of templates (None for unlimited).
    """

    def __init__(self, kv: KeyValueStore, max_templates: Optional[int] = None):
        self._kv = kv
        self.max_templates = max_templates
        self._templates: List[Template] = []
        self._last_id = 0
        self._lock = asyncio.Lock()

    async def load(self, seed_defaults: bool = True) -> int:
        """Load persisted templates; seed the defaults when none exist yet."""
        stored = await self._kv.get([TEMPLATES_KEY])
        raw = stored.get(TEMPLATES_KEY)

        templates = []
        for entry in raw or []:
            try:
                templates.append(Template.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed template: {e}")

        async with self._lock:
            self._templates = templates
            if templates:
                self._last_id = max(t.id for t in templates)
            if raw is None and seed_defaults:
                for default in DEFAULT_TEMPLATES:
                    self._templates.append(
                        Template(id=self._next_id(), created=utc_now(), **default)
                    )
                await self._save_locked()
                logger.info(f"Seeded {len(DEFAULT_TEMPLATES)} default templates")

        return len(self._templates)

    def list_templates(self) -> List[Template]:
        return [Template.from_dict(t.to_dict()) for t in self._templates]

    def get(self, template_id: int) -> Optional[Template]:
        template = self._find(template_id)
        return Template.from_dict(template.to_dict()) if template else None

    async def create(
        self, name: str, content: str, description: str = "", shortcut: str = ""
    ) -> Template:
        """Add a template.

        Raises:
            ValidationError: If name or content is blank
            LimitExceededError: If the template ceiling has been reached
        """
        if not name.strip() or not content.strip():
            raise ValidationError("Template name and content are required")

        async with self._lock:
            if self.max_templates is not None and len(self._templates) >= self.max_templates:
                raise LimitExceededError(
                    f"Template limit reached ({self.max_templates} templates)"
                )
            template = Template(
                id=self._next_id(),
                name=name.strip(),
                content=content,
                description=description,
                shortcut=shortcut,
            )
            self._templates.append(template)
            await self._save_locked()
        return Template.from_dict(template.to_dict())

    async def update(self, template_id: int, **fields) -> Optional[Template]:
        """Edit name/content/description/shortcut and stamp ``modified``."""
        allowed = {"name", "content", "description", "shortcut"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update template fields: {sorted(unknown)}")

        async with self._lock:
            template = self._find(template_id)
            if template is None:
                return None
            for key, value in fields.items():
                setattr(template, key, value)
            template.modified = utc_now()
            await self._save_locked()
        return Template.from_dict(template.to_dict())

    async def delete(self, template_id: int) -> bool:
        async with self._lock:
            remaining = [t for t in self._templates if t.id != template_id]
            if len(remaining) == len(self._templates):
                return False
            self._templates = remaining
            await self._save_locked()
        return True

    async def render(
        self, template_id: int, values: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        """Fill a template's placeholders and count the use.

        Returns:
            The rendered text, or None if the template does not exist
        """
        async with self._lock:
            template = self._find(template_id)
            if template is None:
                return None
            text = fill_template(template.content, values or {})
            template.usage_count += 1
            template.last_used = utc_now()
            await self._save_locked()
        return text

    async def replace(self, templates: List[Template]) -> None:
        async with self._lock:
            self._templates = [Template.from_dict(t.to_dict()) for t in templates]
            if self._templates:
                self._last_id = max(self._last_id, max(t.id for t in self._templates))
            await self._save_locked()

    async def _save_locked(self) -> None:
        await self._kv.set({TEMPLATES_KEY: [t.to_dict() for t in self._templates]})

    def _find(self, template_id: int) -> Optional[Template]:
        for template in self._templates:
            if template.id == template_id:
                return template
        return None

    def _next_id(self) -> int:
        candidate = now_ms()
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate
