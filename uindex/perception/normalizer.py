import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..core.config import ActiveApplication, UIElement
from .scanner import RawElement

logger = logging.getLogger(__name__)

UNLABELED = "unlabeled"
MIN_SIDE = 5

# Platform role names -> shared vocabulary
ROLE_ALIASES: Dict[str, str] = {
    # macOS (System Events)
    "axbutton": "button",
    "axtextfield": "text field",
    "axsearchfield": "text field",
    "axsecuretextfield": "text field",
    "axtextarea": "text area",
    "axcheckbox": "checkbox",
    "axradiobutton": "radio button",
    "axmenuitem": "menu item",
    "axmenubaritem": "menu item",
    "axmenu": "menu",
    "axmenubar": "menu bar",
    "axcombobox": "combo box",
    "axpopupbutton": "pop up button",
    "axmenubutton": "pop up button",
    "axslider": "slider",
    "axtab": "tab",
    "axtabgroup": "tab group",
    "axlink": "link",
    "axstatictext": "static text",
    "aximage": "image",
    "axheading": "heading",
    "axtable": "table",
    "axoutline": "outline",
    "axlist": "list",
    "axrow": "row",
    "axcell": "cell",
    "axgroup": "group",
    "axwindow": "window",
    "axdialog": "dialog",
    "axsheet": "sheet",
    "axscrollarea": "scroll area",
    "axscrollbar": "scroll bar",
    "axsplitgroup": "split group",
    "axsplitter": "splitter",
    "axtoolbar": "toolbar",
    "axprogressindicator": "progress indicator",
    "axwebarea": "web area",
    "axapplication": "application",
    "axgenericelement": "generic element",
    # Windows (UI Automation ControlTypeName)
    "buttoncontrol": "button",
    "editcontrol": "text field",
    "documentcontrol": "text area",
    "checkboxcontrol": "checkbox",
    "radiobuttoncontrol": "radio button",
    "menuitemcontrol": "menu item",
    "menucontrol": "menu",
    "menubarcontrol": "menu bar",
    "comboboxcontrol": "combo box",
    "splitbuttoncontrol": "pop up button",
    "slidercontrol": "slider",
    "tabitemcontrol": "tab",
    "tabcontrol": "tab group",
    "hyperlinkcontrol": "link",
    "textcontrol": "static text",
    "imagecontrol": "image",
    "headercontrol": "heading",
    "tablecontrol": "table",
    "datagridcontrol": "table",
    "treecontrol": "outline",
    "treeitemcontrol": "row",
    "listcontrol": "list",
    "listitemcontrol": "row",
    "dataitemcontrol": "cell",
    "groupcontrol": "group",
    "panecontrol": "group",
    "windowcontrol": "window",
    "scrollbarcontrol": "scroll bar",
    "toolbarcontrol": "toolbar",
    "progressbarcontrol": "progress indicator",
    "customcontrol": "generic element",
}

CLASS_NAMES: Dict[str, str] = {
    "button": "NSButton",
    "text field": "NSTextField",
    "static text": "NSTextField",
    "image": "NSImageView",
    "menu": "NSMenu",
    "menu item": "NSMenuItem",
    "window": "NSWindow",
    "group": "NSView",
    "scroll area": "NSScrollView",
    "table": "NSTableView",
    "outline": "NSOutlineView",
    "tab group": "NSTabView",
    "checkbox": "NSButton",
    "radio button": "NSButton",
    "slider": "NSSlider",
    "progress indicator": "NSProgressIndicator",
    "text area": "NSTextView",
    "combo box": "NSComboBox",
    "pop up button": "NSPopUpButton",
    "toolbar": "NSToolbar",
    "split group": "NSSplitView",
}
DEFAULT_CLASS_NAME = "NSView"

# Exact-match roles that earn the interactive confidence bonus.
SCORED_INTERACTIVE_ROLES = (
    "button", "text field", "checkbox", "radio button", "menu item", "combo box",
)

# Substring-matched role families for the relevance filter.
INTERACTIVE_ROLES = (
    "button", "text field", "checkbox", "radio button", "menu item",
    "combo box", "slider", "tab", "link", "pop up button",
    "text area", "search field", "table", "outline", "list",
    "scroll bar", "splitter", "toolbar",
)
INFORMATIVE_ROLES = ("static text", "image", "heading", "text", "label")
CONTAINER_ROLES = (
    "group", "window", "dialog", "sheet", "scroll area", "split group",
    "application", "web area", "generic element",
)


def canonical_role(role: str) -> str:
    key = (role or "").strip().lower()
    if not key:
        return "unknown"
    return ROLE_ALIASES.get(key, ROLE_ALIASES.get(key.replace(" ", ""), key))


def _matches(role: str, families) -> bool:
    return any(family in role for family in families)


def _content(label: str) -> str:
    return "" if label == UNLABELED else label


def score_confidence(role: str, label: str, value: Optional[str]) -> float:
    score = 0.5
    if role in SCORED_INTERACTIVE_ROLES:
        score += 0.3
    if _content(label).strip():
        score += 0.2
    if value and value.strip():
        score += 0.1
    return max(0.0, min(score, 1.0))


def is_relevant(element: UIElement) -> bool:
    if element.width < MIN_SIDE or element.height < MIN_SIDE:
        return False
    if not element.is_visible:
        return False

    role = element.role.lower()
    label = _content(element.label)
    value = element.value or ""

    if _matches(role, INTERACTIVE_ROLES):
        return True

    if _matches(role, INFORMATIVE_ROLES):
        if label or value or (element.width > 20 and element.height > 10):
            return True

    if _matches(role, CONTAINER_ROLES):
        if element.width > 50 and element.height > 20:
            return True

    return len(label) > 2 or len(value) > 2 or (element.width > 100 and element.height > 30)


class ElementNormalizer:
    """Turns raw scan records into canonical, scored UIElements."""

    def normalize(self, raw: RawElement, app: ActiveApplication, index: int,
                  now: Optional[datetime] = None) -> UIElement:
        role = canonical_role(raw.role)
        label = raw.title or raw.description or raw.help or raw.value or UNLABELED
        value = raw.value or raw.description or raw.help or None

        return UIElement(
            app_name=app.name,
            window_title=app.window_title,
            role=role,
            label=label,
            value=value,
            x=raw.x,
            y=raw.y,
            width=raw.width,
            height=raw.height,
            accessibility_id=raw.accessibility_id or f"{app.name}_{role}_{raw.x}_{raw.y}",
            class_name=raw.class_name or CLASS_NAMES.get(role, DEFAULT_CLASS_NAME),
            automation_id=raw.automation_id or f"{role}_{label[:20]}_{index}",
            is_enabled=raw.enabled,
            is_visible=raw.visible,
            confidence=score_confidence(role, label, raw.value or raw.description),
            last_seen=now or datetime.now(),
        )

    def normalize_all(self, raws: List[RawElement], app: ActiveApplication,
                      now: Optional[datetime] = None) -> List[UIElement]:
        """Normalize and filter one scan; rejected elements are dropped."""
        now = now or datetime.now()
        elements: List[UIElement] = []
        for raw in raws:
            if raw.width <= 0 or raw.height <= 0:
                continue
            element = self.normalize(raw, app, len(elements), now)
            if is_relevant(element):
                elements.append(element)
            else:
                logger.debug("Filtered out %s %r (%dx%d)", element.role, element.label,
                             element.width, element.height)
        return elements
