from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parent / "templates")),
    autoescape=select_autoescape(["html", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
    enable_async=False,
)

# (keywords, scheme) checked in order against the prompt; first hit wins.
COLOR_SCHEMES: Tuple[Tuple[Tuple[str, ...], Dict[str, str]], ...] = (
    (
        ("food", "restaurant", "cafe", "coffee", "bakery", "recipe"),
        {"name": "warm", "background": "#FFF7ED", "primary": "#EA580C", "text": "#431407", "accent": "#FDBA74"},
    ),
    (
        ("bank", "finance", "fintech", "corporate", "saas", "dashboard"),
        {"name": "ocean", "background": "#F0F9FF", "primary": "#0369A1", "text": "#0C4A6E", "accent": "#7DD3FC"},
    ),
    (
        ("health", "fitness", "nature", "eco", "garden", "wellness"),
        {"name": "forest", "background": "#F0FDF4", "primary": "#15803D", "text": "#14532D", "accent": "#86EFAC"},
    ),
    (
        ("game", "gaming", "music", "night", "crypto", "portfolio"),
        {"name": "midnight", "background": "#0F172A", "primary": "#8B5CF6", "text": "#F8FAFC", "accent": "#38BDF8"},
    ),
    (
        ("shop", "store", "fashion", "boutique", "ecommerce", "e-commerce"),
        {"name": "boutique", "background": "#FDF2F8", "primary": "#BE185D", "text": "#500724", "accent": "#F9A8D4"},
    ),
)
DEFAULT_SCHEME: Dict[str, str] = {
    "name": "modern",
    "background": "#FFFFFF",
    "primary": "#2563EB",
    "text": "#111827",
    "accent": "#93C5FD",
}

PAGE_TYPE_BRIEFS: Dict[str, str] = {
    "login": "A sign-in screen: logo, email and password inputs, a 'Sign In' button and a 'Sign Up' link button.",
    "register": "A registration form: name, email and password inputs and a 'Create Account' button.",
    "home": "The landing page: navigation header, hero with headline and a primary call-to-action, highlights and footer.",
    "features": "A features overview: a grid of feature cards with icons, titles and short descriptions.",
    "about": "An about page: mission statement, team or story section and a contact call-to-action.",
    "contact": "A contact page: contact form inputs (name, email, message), a 'Send' button and contact details.",
    "detail": "A detail page for one item or topic: title, media placeholder, description, key facts and a 'Learn More' button.",
    "get_started": "An onboarding page: three numbered steps and a 'Begin' button.",
}


def pick_color_scheme(text: Optional[str]) -> Dict[str, str]:
    lowered = (text or "").lower()
    for keywords, scheme in COLOR_SCHEMES:
        if any(k in lowered for k in keywords):
            return dict(scheme)
    return dict(DEFAULT_SCHEME)


def build_design_prompt(prompt: str) -> str:
    """Prompt for a one-off design generated from free text."""
    return _env.get_template("design_prompt.j2").render(
        prompt=(prompt or "").strip(),
        scheme=pick_color_scheme(prompt),
    )


def build_page_prompt(project: Mapping[str, Any], page_type: str) -> str:
    """Prompt for the next page of a project.

    ``project`` is a session status snapshot; colours already established
    by earlier pages take precedence over the keyword-picked scheme.
    """
    scheme = pick_color_scheme(f"{project.get('name') or ''} {project.get('description') or ''}")
    established = project.get("design_system") or {}
    colors = dict(scheme)
    for key in ("background", "primary", "text"):
        if established.get(key):
            colors[key] = established[key]
    existing = list(project.get("pages") or [])
    return _env.get_template("page_prompt.j2").render(
        project=project,
        page_type=page_type,
        page_number=len(existing) + 1,
        page_brief=PAGE_TYPE_BRIEFS.get(page_type, PAGE_TYPE_BRIEFS["detail"]),
        existing_pages=existing,
        colors=colors,
    )
