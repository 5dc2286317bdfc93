from __future__ import annotations

import pytest

from agnet_runtime.agent_mdx import normalize_section_id, parse_agent_mdx, parse_headings
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.providers import CliRuntime

SAMPLE = """---
id: demo
name: Demo Agent
version: 0.1.0
runtime:
  transport: cli
  command: demo-agent
  args: ["--fast"]
auth:
  kind: bearer
mcp:
  tools: [" search "]
---
# Description

A demo agent.

```md
# Not a heading
```

## System Prompt

Be helpful.

## Rules

### Be brief

Keep answers short.

### Don't guess

Say when unsure.

## Skills

### chat

Plain chat.
"""


def _without(text: str, old: str, new: str = "") -> str:
    assert old in text
    return text.replace(old, new)


def test_parses_frontmatter_and_sections() -> None:
    config = parse_agent_mdx(SAMPLE, path="demo.agent.mdx")
    card = config.agent

    assert card.id == "demo"
    assert card.version == "0.1.0"
    assert card.description.startswith("A demo agent.")
    assert "# Not a heading" in card.description
    assert card.extensions == {"systemPrompt": "Be helpful."}
    assert [(r.id, r.text) for r in card.rules] == [("be-brief", "Keep answers short."), ("dont-guess", "Say when unsure.")]
    assert [(s.id, s.description) for s in card.skills] == [("chat", "Plain chat.")]
    assert card.auth.kind == "bearer"
    assert card.mcp.tools == ["search"]
    assert isinstance(config.runtime, CliRuntime)
    assert config.runtime.args == ["--fast"]


def test_crlf_input_is_accepted() -> None:
    config = parse_agent_mdx(SAMPLE.replace("\n", "\r\n"))
    assert config.agent.extensions == {"systemPrompt": "Be helpful."}


def test_headings_inside_fences_are_skipped() -> None:
    headings = parse_headings("# A\n~~~\n## B\n~~~\n## C\n")
    assert [(h.level, h.text) for h in headings] == [(1, "A"), (2, "C")]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("Be brief", "be-brief"), ("Don’t  Panic!", "dont-panic"), ("  v2 / API  ", "v2-api")],
)
def test_normalize_section_id(raw: str, expected: str) -> None:
    assert normalize_section_id(raw) == expected


@pytest.mark.parametrize(
    ("source", "fragment"),
    [
        ("# Description\n", "missing required YAML frontmatter"),
        ("\n" + SAMPLE, "frontmatter must start at the first line"),
        ("---\nid: x\n# Description\n", "unterminated frontmatter"),
        (_without(SAMPLE, "name: Demo Agent\n"), "missing required frontmatter field: name"),
        (_without(SAMPLE, "## Rules\n"), "missing required markdown section: ## Rules"),
        (_without(SAMPLE, "### chat\n\nPlain chat.\n"), "must contain at least one"),
        (_without(SAMPLE, "### Don't guess", "### BE  BRIEF"), 'Duplicate rules id after normalization: "be-brief"'),
        (_without(SAMPLE, "id: demo\n", "id: demo\ndescription: dup\n"), "Description is defined both"),
        (_without(SAMPLE, "kind: bearer", "kind: oauth"), 'frontmatter.auth.kind must be "none"'),
        (_without(SAMPLE, "# Description\n", "Intro text.\n\n# Description\n"), "first markdown section"),
        (_without(SAMPLE, "  command: demo-agent\n"), 'Invalid provider config at "runtime.command"'),
    ],
)
def test_invalid_documents_raise_invalid_config(source: str, fragment: str) -> None:
    with pytest.raises(AgnetError) as exc:
        parse_agent_mdx(source, path="bad.agent.mdx")
    assert exc.value.code == ErrorCode.INVALID_CONFIG
    assert exc.value.message.startswith('Invalid .agent.mdx at "bad.agent.mdx"')
    assert fragment in exc.value.message
