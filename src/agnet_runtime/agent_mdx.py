"""Parser for `.agent.mdx` provider files: YAML frontmatter plus a fixed markdown outline.

Expected shape::

    ---
    id: my-agent
    name: My Agent
    version: 0.1.0
    runtime: {transport: cli, command: my-agent}
    ---
    # Description
    ...
    ## System Prompt
    ...
    ## Rules
    ### Be brief
    ...
    ## Skills
    ### chat
    ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import yaml

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.providers import ProviderConfig, validate_provider_config

_FENCE_RE = re.compile(r"^(~~~|```)")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
_DESCRIPTION_RE = re.compile(r"^#\s+description\s*$", re.IGNORECASE)

_OUTLINE = (
    (1, "description", "Description"),
    (2, "system prompt", "System Prompt"),
    (2, "rules", "Rules"),
    (2, "skills", "Skills"),
)


@dataclass
class Heading:
    level: int
    text: str
    line: int


def _mdx_error(path: str | None, message: str) -> AgnetError:
    where = f' at "{path}"' if path else ""
    return AgnetError(
        ErrorCode.INVALID_CONFIG,
        f"Invalid .agent.mdx{where}: {message}",
        details={"path": path} if path else None,
    )


def _collapse_ws(text: str) -> str:
    return " ".join(text.split())


def normalize_section_id(raw: str) -> str:
    """Kebab-case a heading: lowercase, apostrophes dropped, other non-alphanumerics to '-'."""
    text = raw.strip().lower()
    text = re.sub(r"['’]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def _split_frontmatter(raw: str, path: str | None) -> tuple[str, str]:
    text = raw.replace("\r\n", "\n")
    if not text.startswith("---\n"):
        if text.lstrip() != text:
            raise _mdx_error(path, "frontmatter must start at the first line with '---'")
        raise _mdx_error(path, "missing required YAML frontmatter (expected starting '---')")

    lines = text.split("\n")
    for end in range(1, len(lines)):
        if lines[end].strip() == "---":
            return "\n".join(lines[1:end]), "\n".join(lines[end + 1 :])
    raise _mdx_error(path, "unterminated frontmatter (missing closing '---')")


def parse_headings(markdown: str) -> list[Heading]:
    """Collect ATX headings, skipping anything inside ``` or ~~~ fences."""
    headings: list[Heading] = []
    fence: str | None = None
    for number, line in enumerate(markdown.replace("\r\n", "\n").split("\n"), start=1):
        stripped = line.lstrip()
        fence_match = _FENCE_RE.match(stripped)
        if fence_match:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker
            elif fence == marker:
                fence = None
            continue
        if fence is not None:
            continue
        match = _HEADING_RE.match(stripped)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2), line=number))
    return headings


def _slice(lines: list[str], start: int, end: int) -> str:
    chunk = lines[start:end]
    while chunk and not chunk[0].strip():
        chunk.pop(0)
    while chunk and not chunk[-1].strip():
        chunk.pop()
    return "\n".join(chunk).rstrip()


def _subsections(markdown: str, path: str | None, section: str) -> list[tuple[str, str]]:
    lines = markdown.split("\n")
    headings = [h for h in parse_headings(markdown) if h.level == 3]
    seen: set[str] = set()
    out: list[tuple[str, str]] = []
    for i, heading in enumerate(headings):
        section_id = normalize_section_id(heading.text)
        if not section_id:
            raise _mdx_error(path, f"{section} subsection heading must produce a non-empty id")
        if section_id in seen:
            raise _mdx_error(path, f'Duplicate {section.lower()} id after normalization: "{section_id}"')
        seen.add(section_id)
        end = headings[i + 1].line - 1 if i + 1 < len(headings) else len(lines)
        out.append((section_id, _slice(lines, heading.line, end)))
    return out


def _check_conflicts(fm: dict[str, Any], path: str | None) -> None:
    agent = fm.get("agent") if isinstance(fm.get("agent"), dict) else {}
    extensions = fm.get("extensions") if isinstance(fm.get("extensions"), dict) else {}
    checks = (
        ("Description", "is", "description" in fm or "description" in agent),
        (
            "System Prompt",
            "is",
            "systemPrompt" in fm or "systemPrompt" in agent or "systemPrompt" in extensions,
        ),
        ("Rules", "are", "rules" in fm or "rules" in agent),
        ("Skills", "are", "skills" in fm or "skills" in agent),
    )
    for label, verb, present in checks:
        if present:
            raise _mdx_error(path, f"{label} {verb} defined both in frontmatter and body. Choose exactly one source.")


def _required_text(fm: dict[str, Any], key: str, path: str | None) -> str:
    value = fm.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise _mdx_error(path, f"missing required frontmatter field: {key}")
    return value.strip()


def _optional_mcp(fm: dict[str, Any], path: str | None) -> dict[str, Any] | None:
    if "mcp" not in fm:
        return None
    mcp = fm["mcp"]
    if not isinstance(mcp, dict):
        raise _mdx_error(path, "frontmatter.mcp must be an object")
    tools = mcp.get("tools")
    if tools is None:
        return None
    if not isinstance(tools, list):
        raise _mdx_error(path, "frontmatter.mcp.tools must be an array")
    normalized = []
    for i, tool in enumerate(tools):
        if not isinstance(tool, str) or not tool.strip():
            raise _mdx_error(path, f"frontmatter.mcp.tools[{i}] must be a non-empty string")
        normalized.append(tool.strip())
    return {"tools": normalized}


def _optional_auth(fm: dict[str, Any], path: str | None) -> dict[str, Any] | None:
    if "auth" not in fm:
        return None
    auth = fm["auth"]
    if not isinstance(auth, dict):
        raise _mdx_error(path, "frontmatter.auth must be an object")
    kind = auth.get("kind")
    if not isinstance(kind, str) or not kind.strip():
        raise _mdx_error(path, "frontmatter.auth.kind must be a non-empty string")
    kind = kind.strip()
    if kind not in {"none", "bearer", "apiKey"}:
        raise _mdx_error(path, 'frontmatter.auth.kind must be "none" | "bearer" | "apiKey"')
    result: dict[str, Any] = {"kind": kind}
    header = auth.get("header")
    if header is not None:
        if not isinstance(header, str) or not header.strip():
            raise _mdx_error(path, "frontmatter.auth.header must be a non-empty string")
        result["header"] = header.strip()
    return result


def _locate_outline(headings: list[Heading], path: str | None) -> list[Heading]:
    found: list[Heading] = []
    cursor = 0
    for level, key, label in _OUTLINE:
        match = None
        for i in range(cursor, len(headings)):
            heading = headings[i]
            if heading.level == level and _collapse_ws(heading.text).lower() == key:
                match = heading
                cursor = i + 1
                break
        if match is None:
            raise _mdx_error(path, f"missing required markdown section: {'#' * level} {label}")
        found.append(match)
    return found


def parse_agent_mdx(raw: str, *, path: str | None = None) -> ProviderConfig:
    frontmatter, body = _split_frontmatter(raw, path)
    try:
        fm = yaml.safe_load(frontmatter)
    except yaml.YAMLError as exc:
        raise _mdx_error(path, f"failed to parse YAML frontmatter: {exc}") from exc
    if not isinstance(fm, dict):
        raise _mdx_error(path, "frontmatter must be a YAML object")

    _check_conflicts(fm, path)
    agent_id = _required_text(fm, "id", path)
    name = _required_text(fm, "name", path)
    version = _required_text(fm, "version", path)
    if "runtime" not in fm:
        raise _mdx_error(path, "missing required frontmatter field: runtime")
    mcp = _optional_mcp(fm, path)
    auth = _optional_auth(fm, path)

    lines = body.split("\n")
    description_h, system_h, rules_h, skills_h = _locate_outline(parse_headings(body), path)

    first = next((line for line in lines if line.strip()), None)
    if first is not None and not _DESCRIPTION_RE.match(_collapse_ws(first)):
        raise _mdx_error(path, 'first markdown section must be "# Description"')

    description = _slice(lines, description_h.line, system_h.line - 1)
    system_prompt = _slice(lines, system_h.line, rules_h.line - 1)
    rules = [
        {"id": rule_id, "text": text}
        for rule_id, text in _subsections(_slice(lines, rules_h.line, skills_h.line - 1), path, "Rules")
    ]
    skills = [
        {"id": skill_id, "description": text}
        for skill_id, text in _subsections(_slice(lines, skills_h.line, len(lines)), path, "Skills")
    ]
    if not skills:
        raise _mdx_error(path, '## Skills must contain at least one "### <skill-id>" subsection')

    agent: dict[str, Any] = {
        "id": agent_id,
        "name": name,
        "version": version,
        "description": description,
        "skills": skills,
    }
    if rules:
        agent["rules"] = rules
    if mcp:
        agent["mcp"] = mcp
    if auth:
        agent["auth"] = auth
    if system_prompt.strip():
        agent["extensions"] = {"systemPrompt": system_prompt}

    try:
        return validate_provider_config({"agent": agent, "runtime": fm["runtime"]}, source=path)
    except AgnetError as exc:
        raise _mdx_error(path, exc.message) from exc
