"""
Page-to-text extraction for LLMs.

Walks the page HTML with BeautifulSoup and produces a compact, markdown-ish
summary: headings, landmark sections, short text snippets and numbered
interactive elements. The numbers index an element map that is rebuilt on
every observation; an ID from an older observation means nothing.

Output format:
    **Example Domain**
    URL: https://example.com

    __NAVIGATION__:
      - Link "Home" [1]
    **Welcome** (Level 1)
      - Textbox "Email" [2]
      - Button "Sign In" [3]
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString


@dataclass(frozen=True)
class ElementDescriptor:
    """An interactive element from one observation."""
    role: str
    name: str
    selector: str


@dataclass
class PageObservation:
    """What the agent sees of the page in one cycle."""
    url: str
    title: str
    content: str
    element_map: Dict[int, ElementDescriptor] = field(default_factory=dict)
    screenshot: Optional[bytes] = None


SKIP_TAGS = {"script", "style", "noscript", "template", "svg", "head", "iframe"}
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
LANDMARKS = {
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
}
INTERACTIVE_ROLES = {
    "button", "link", "textbox", "checkbox", "radio", "combobox",
    "listbox", "option", "menuitem", "tab", "switch", "slider",
}
INPUT_ROLES = {
    "checkbox": "checkbox",
    "radio": "radio",
    "submit": "button",
    "button": "button",
    "reset": "button",
    "image": "button",
    "range": "slider",
}

DEFAULT_CHAR_BUDGET = 32000


def clean(text: str, max_len: int = 120) -> str:
    """Collapse whitespace and cap length."""
    out = re.sub(r"\s+", " ", text).strip()
    return out[:max_len - 1] + "…" if len(out) > max_len else out


def _is_hidden(el: Tag) -> bool:
    if el.get("type") == "hidden" or el.has_attr("hidden"):
        return True
    if el.get("aria-hidden") == "true":
        return True
    style = (el.get("style") or "").replace(" ", "").lower()
    return "display:none" in style or "visibility:hidden" in style


def _role_for(el: Tag) -> Optional[str]:
    """ARIA-ish role for an interactive element, or None."""
    explicit = el.get("role")
    if explicit in INTERACTIVE_ROLES:
        return explicit

    name = el.name
    if name == "a" and el.get("href") is not None:
        return "link"
    if name == "button":
        return "button"
    if name == "input":
        return INPUT_ROLES.get((el.get("type") or "text").lower(), "textbox")
    if name == "textarea":
        return "textbox"
    if name == "select":
        return "combobox"
    return None


def _label_for(el: Tag, role: str) -> str:
    text = clean(el.get_text(" ", strip=True))
    if text:
        return text
    for attr in ("aria-label", "placeholder", "value", "title", "alt", "name"):
        if el.get(attr):
            return clean(str(el.get(attr)))
    img = el.find("img", alt=True)
    if img:
        return clean(img["alt"])
    return role


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def build_selector(el: Tag) -> str:
    """Build a Playwright selector for an element."""
    # Prefer ID
    if el.get("id"):
        return f"[id={_quote(el.get('id'))}]"

    if el.get("data-testid"):
        return f"[data-testid={_quote(el.get('data-testid'))}]"

    if el.get("name"):
        return f"{el.name}[name={_quote(el.get('name'))}]"

    if el.name == "a" and el.get("href"):
        return f"a[href={_quote(el.get('href'))}]"

    if el.get("aria-label"):
        return f"{el.name}[aria-label={_quote(el.get('aria-label'))}]"

    # has-text matches substrings, so a truncated label still resolves
    text = clean(el.get_text(" ", strip=True), 40).rstrip("…")
    if text:
        return f"{el.name}:has-text({_quote(text)})"

    classes = el.get("class", [])
    if classes:
        return f"{el.name}." + ".".join(classes[:2])

    return el.name


def extract_observation(
    html: str,
    url: str = "",
    title: str = "",
    char_budget: int = DEFAULT_CHAR_BUDGET,
) -> PageObservation:
    """
    Turn page HTML into an LLM-readable observation.

    Args:
        html: Raw HTML string
        url: Page URL
        title: Page title (read from <title> if empty)
        char_budget: Maximum characters of page content

    Returns:
        PageObservation with content and a fresh element map
    """
    soup = BeautifulSoup(html, "html.parser")

    if not title:
        title_tag = soup.find("title")
        if title_tag:
            title = title_tag.get_text(strip=True)

    element_map: Dict[int, ElementDescriptor] = {}
    lines: List[str] = []

    def walk(node: Tag, depth: int) -> None:
        indent = "  " * depth
        for child in node.children:
            if isinstance(child, PreformattedString):  # comments, doctype, CDATA
                continue
            if isinstance(child, NavigableString):
                text = clean(str(child))
                if len(text) > 1:
                    lines.append(f"{indent}{text}")
                continue
            if not isinstance(child, Tag) or child.name in SKIP_TAGS or _is_hidden(child):
                continue

            if child.name in HEADING_TAGS:
                heading = clean(child.get_text(" ", strip=True)) or "Heading"
                lines.append(f"\n{indent}**{heading}** (Level {child.name[1]})")
                continue

            role = _role_for(child)
            if role:
                label = _label_for(child, role)
                element_id = len(element_map) + 1
                element_map[element_id] = ElementDescriptor(
                    role=role, name=label, selector=build_selector(child)
                )
                state = []
                if child.has_attr("checked"):
                    state.append("(checked)")
                if child.has_attr("disabled"):
                    state.append("(disabled)")
                line = f'{indent}- {role.capitalize()} "{label}" [{element_id}] {" ".join(state)}'
                lines.append(line.rstrip())
                continue

            if child.name in LANDMARKS:
                lines.append(f"\n{indent}__{LANDMARKS[child.name].upper()}__:")

            walk(child, depth + 1)

    walk(soup.body or soup, 0)

    content = f"**{title or 'Untitled'}**\nURL: {url}\n\n" + "\n".join(lines)
    if len(content) > char_budget:
        content = content[:char_budget] + "\n…(page content truncated)"

    return PageObservation(url=url, title=title, content=content, element_map=element_map)
