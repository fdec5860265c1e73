"""Initial state used on first run and whenever a snapshot cannot be decoded."""

from __future__ import annotations

from .model import (
    Group,
    ItemStatus,
    LeafCollection,
    Space,
    Stage,
    WorkItem,
)
from .ordered import OrderedContainer
from .pipeline import StagePipeline
from .tree import WorkspaceTree


def _sop(heading: str, *bullets: str) -> str:
    lines = [f"<strong>{heading}</strong>", "<ul>"]
    lines.extend(f"    <li>{b}</li>" for b in bullets)
    lines.append("</ul>")
    return "\n".join(lines)


# (title, short title, instructions)
DEFAULT_STAGES: tuple[tuple[str, str, str], ...] = (
    ("Client Submits Form", "Form Submitted", _sop(
        "What happens:",
        "Client fills out website request form",
        "Form captures: business info, services, brand assets",
        "Notification sent to Manager",
    )),
    ("Manager Reviews & Talks to Client", "Manager Review", _sop(
        "Manager Actions:",
        "Review form submission",
        "Call/message client if needed",
        "Gather missing assets",
        "Confirm business type (mobile vs physical)",
    )),
    ("Manager Creates Repository", "Repo Created", _sop(
        "Manager Actions:",
        "Choose base template",
        "Create GitHub repository",
        "Push to GitHub",
    )),
    ("Request Auto-Deployment", "Deploy Requested", _sop(
        "Manager → Senior Dev:",
        "Send repo URL",
        "Request staging domain",
    )),
    ("Senior Dev Sets Up Deployment", "Deploy Ready", _sop(
        "Senior Dev:",
        "Configure VPS",
        "Set up staging domain",
        "Add password protection",
        "Test auto-deployment",
    )),
    ("Manager Designs Initial Pages", "Design", _sop(
        "Manager:",
        "Update branding",
        "Design homepage, services, contact",
        "Push and check staging",
    )),
    ("Schedule Design Review", "Client Review", _sop(
        "Manager:",
        "Send staging link to client",
        "Schedule 15-30 min call",
        "Get feedback",
    )),
    ("Client Approves Design", "Design Approved", _sop(
        "Client sign-off on:",
        "Design direction",
        "Colors & branding",
        "Ready for full build",
    )),
    ("Build Full Website Structure", "Full Build", _sop(
        "Pages to build:",
        "Home, Services, About, Contact, Blog",
        "5 Service Area Pages",
        "Privacy Policy, Terms",
    )),
    ("Senior Manager Reviews Structure", "Structure Review", _sop(
        "Senior Manager checks:",
        "All pages created?",
        "Navigation complete?",
        "Forms placed correctly?",
        "Mobile responsive?",
    )),
    ("Content Writing", "Content", _sop(
        "Write copy for all pages:",
        "Benefit-driven, no fluff",
        "Strong CTAs",
        "Local SEO",
    )),
    ("Senior Manager Approves Content", "Content Approved", _sop(
        "Senior Manager reviews:",
        "Copy quality",
        "Grammar",
    )),
    ("Technical SEO", "SEO", _sop(
        "Complete for ALL pages:",
        "Meta titles & descriptions",
        "H1/H2/H3 structure",
        "Image alt text",
        "Schema markup",
        "Page speed < 3 sec",
    )),
    ("Full Quality Check", "QA", _sop(
        "Test everything:",
        "All forms work",
        "All links work",
        "Mobile responsive",
        "Cross-browser",
    )),
    ("Senior Manager Final Review", "Final Review", _sop(
        "Senior Manager final check:",
        "Content quality",
        "SEO complete",
        "Ready for production",
    )),
    ("Go Live on Production Domain", "Go Live", _sop(
        "Senior Dev:",
        "Migrate to production domain",
        "Remove password",
        "Install SSL",
        "Test live site",
    )),
)


def default_stages() -> list[Stage]:
    return [
        Stage(number=idx, title=title, short_title=short, instructions=sop)
        for idx, (title, short, sop) in enumerate(DEFAULT_STAGES, start=1)
    ]


def default_pipeline() -> StagePipeline:
    return StagePipeline(default_stages())


def _collection(cid: str, name: str, items: list[WorkItem]) -> tuple[LeafCollection, list[WorkItem]]:
    return LeafCollection(id=cid, name=name, item_ids=OrderedContainer(i.id for i in items)), items


def default_tree() -> WorkspaceTree:
    """The demo workspace the product ships with."""
    collections: list[LeafCollection] = []
    items: list[WorkItem] = []

    def add(cid: str, name: str, *entries: tuple[str, str, ItemStatus]) -> str:
        col, its = _collection(cid, name, [WorkItem(id=i, title=t, status=s) for i, t, s in entries])
        collections.append(col)
        items.extend(its)
        return cid

    ai_lab = Space(
        id="ai-lab",
        name="AI Lab",
        color="bg-purple-500",
        icon="A",
        is_open=True,
        collection_ids=OrderedContainer([
            add(
                "seo-spider",
                "SEO Spider",
                ("1", "Admin metrics APIs", ItemStatus.IN_PROGRESS),
                ("2", "Analytics dashboard", ItemStatus.IN_QA),
                ("3", "Blog automation", ItemStatus.TODO),
            ),
            add(
                "agency-automations",
                "Agency Automations",
                ("4", "Slackbot integration", ItemStatus.TODO),
                ("5", "Email notifications", ItemStatus.DONE),
            ),
            add("drum-kit", "Drum Kit Bazaar"),
        ]),
    )
    completed = Group(
        id="completed",
        name="Completed",
        is_open=False,
        collection_ids=OrderedContainer([
            add("xmas-sop", "Xmas Light Installation SOPs"),
            add("lmb-trial", "Local Map Booster SOP: Free Trial"),
        ]),
    )
    sops = Space(
        id="sops",
        name="SOP's",
        color="bg-blue-500",
        icon="S",
        group_ids=OrderedContainer([completed.id]),
    )
    websites = Space(
        id="websites",
        name="Rank Me Higher Websites",
        color="bg-red-500",
        icon="R",
        collection_ids=OrderedContainer([
            add(
                "client-sites",
                "Client Sites",
                ("6", "Off Tint website updates", ItemStatus.IN_PROGRESS),
                ("7", "New client onboarding", ItemStatus.TODO),
            ),
        ]),
    )
    content = Space(id="content", name="Content", color="bg-cyan-500", icon="C")
    accounting = Space(id="accounting", name="Accounting", color="bg-amber-500", icon="A")

    return WorkspaceTree.from_parts(
        [ai_lab, sops, websites, content, accounting],
        [completed],
        collections,
        items,
    )
