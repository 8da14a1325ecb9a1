"""
Closed registry of tags accepted in template markup.

Every tag the compiler sees must resolve here. Structural HTML passes
through to the output; DSL tags drive state, control flow and events;
component tags mount resident components supplied by the host page.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from residentml.core.ir.actions import EVENT_TAGS, ActionKind
from residentml.core.ir.template import FRAGMENT_TAG


class TagKind(StrEnum):
    STRUCTURAL = "structural"
    VARIABLE = "variable"
    DISPLAY = "display"
    CONTROL = "control"
    EVENT = "event"
    ACTION = "action"
    TEMPORAL = "temporal"
    INPUT = "input"
    COMPONENT = "component"
    FRAGMENT = "fragment"


@dataclass(frozen=True)
class TagSpec:
    """A registered tag and its canonical spelling."""

    name: str
    kind: TagKind

    @property
    def is_dsl(self) -> bool:
        return self.kind not in (TagKind.STRUCTURAL, TagKind.COMPONENT)


STRUCTURAL_TAGS: tuple[str, ...] = (
    "div", "span", "section", "article", "aside", "header", "footer", "main", "nav",
    "a", "p", "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "dl", "dt", "dd",
    "table", "thead", "tbody", "tfoot", "tr", "th", "td", "caption", "colgroup", "col",
    "form", "input", "button", "select", "option", "textarea", "label", "fieldset", "legend",
    "img", "video", "audio", "source", "picture", "canvas", "svg", "figure", "figcaption",
    "strong", "em", "b", "i", "u", "s", "small", "mark", "sub", "sup", "abbr", "cite", "q",
    "code", "pre", "blockquote", "br", "hr", "wbr", "time", "details", "summary",
)  # fmt: skip

VOID_TAGS: frozenset[str] = frozenset(
    {"br", "hr", "img", "input", "col", "source", "wbr"}
)

CONTROL_TAGS: tuple[str, ...] = (
    "If", "ElseIf", "Else", "Show", "Choose", "When", "Otherwise",
    "IfOwner", "IfVisitor", "Switch", "Case", "Default", "ForEach",
)  # fmt: skip

TEMPORAL_TAGS: tuple[str, ...] = ("Sequence", "Step", "Delay")

RESIDENT_COMPONENTS: tuple[str, ...] = (
    "ProfilePhoto", "DisplayName", "Bio", "BlogPosts", "Guestbook", "FriendDisplay",
    "FriendBadge", "MutualFriends", "FollowButton", "ProfileBadges", "ProfileHeader",
    "ProfileHero", "MediaGrid", "ImageCarousel", "CarouselImage", "WebsiteDisplay",
    "ContactCard", "ContactMethod", "NotificationBell", "NotificationCenter",
    "SiteBranding", "ThreadsteadNavigation", "UserAccount", "UserImage", "Breadcrumb",
    "Tabs", "Tab", "SkillChart", "Skill", "ProgressTracker", "ProgressItem",
    "RetroCard", "RetroTerminal", "RetroTV", "RetroGrid", "PolaroidFrame", "StickyNote",
    "NeonSign", "NeonBorder", "GlitchText", "WaveText", "MatrixRain", "PixelArtFrame",
    "CRTMonitor", "VHSTape", "CassetteTape", "Boombox", "ArcadeButton", "RevealBox",
    "FloatingBadge", "GradientBox", "CenteredBox", "FlexContainer", "GridLayout",
    "SplitLayout", "Heading", "Paragraph", "TextElement",
)  # fmt: skip


class TagRegistry:
    """
    Case-insensitive tag lookup.

    HTML is case-insensitive, and authors often write ``<showvar>`` or the
    HTML parser lowers names; ``resolve`` always returns the canonical name.
    """

    def __init__(self, specs: Iterable[TagSpec] = ()) -> None:
        self._by_key: dict[str, TagSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: TagSpec) -> None:
        self._by_key[spec.name.lower()] = spec

    def add_components(self, names: Iterable[str]) -> None:
        for name in names:
            self.add(TagSpec(name, TagKind.COMPONENT))

    def resolve(self, name: str) -> TagSpec | None:
        return self._by_key.get(name.lower())

    def is_known(self, name: str) -> bool:
        return name.lower() in self._by_key

    def kind_of(self, name: str) -> TagKind | None:
        spec = self.resolve(name)
        return spec.kind if spec else None

    def names(self, kind: TagKind | None = None) -> list[str]:
        return sorted(s.name for s in self._by_key.values() if kind is None or s.kind == kind)

    def copy(self) -> TagRegistry:
        return TagRegistry(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)


def default_registry(extra_components: Iterable[str] = ()) -> TagRegistry:
    """The built-in tag set plus any host-provided component names."""
    registry = TagRegistry()
    for name in STRUCTURAL_TAGS:
        registry.add(TagSpec(name, TagKind.STRUCTURAL))
    registry.add(TagSpec("Var", TagKind.VARIABLE))
    registry.add(TagSpec("ShowVar", TagKind.DISPLAY))
    for name in CONTROL_TAGS:
        registry.add(TagSpec(name, TagKind.CONTROL))
    for name in EVENT_TAGS:
        registry.add(TagSpec(name, TagKind.EVENT))
    for kind in ActionKind:
        registry.add(TagSpec(kind.value, TagKind.ACTION))
    registry.add(TagSpec("Property", TagKind.ACTION))
    for name in TEMPORAL_TAGS:
        registry.add(TagSpec(name, TagKind.TEMPORAL))
    registry.add(TagSpec("TInput", TagKind.INPUT))
    registry.add(TagSpec("Checkbox", TagKind.INPUT))
    registry.add(TagSpec(FRAGMENT_TAG, TagKind.FRAGMENT))
    registry.add_components(RESIDENT_COMPONENTS)
    registry.add_components(extra_components)
    return registry
