"""
Fragment & Context agent.

Summarizes and tags canvas fragments and groups them into themed clusters.
A malformed answer falls back to a local heuristic; an LLM failure is left
to the caller.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from puzzlecraft.core.llm_client import BaseLLMClient
from puzzlecraft.core.llm_output import parse_model
from puzzlecraft.models.domain import Cluster, Fragment

logger = logging.getLogger(__name__)

HEURISTIC_CLUSTER_ID = "cluster-heuristic"


class FragmentInsight(BaseModel):
    id: str
    title: Optional[str] = None
    summary: str = ""
    tags: list[str] = Field(default_factory=list)


class ContextCluster(BaseModel):
    id: str
    theme: str
    fragment_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("fragment_ids", "fragmentIds"),
    )

    def to_cluster(self) -> Cluster:
        return Cluster(id=self.id, theme=self.theme, fragment_ids=list(self.fragment_ids))


class FragmentContextOutput(BaseModel):
    fragments: list[FragmentInsight]
    clusters: Optional[list[ContextCluster]] = None


def build_fragment_context_prompt(process_aim: str, fragments: list[Fragment]) -> str:
    items = "\n".join(f"- ({f.id}) [{f.type.value}] {f.content}" for f in fragments)
    return f"""You are the Fragment & Context Agent.
Process Aim: {process_aim}

Fragments:
{items}

For each fragment, generate:
1. title: a short, memorable title (2-5 words)
2. summary: a 1-2 sentence summary of the content
3. tags: 2-4 relevant keywords

Return JSON:
{{
  "fragments": [{{"id": string, "title": string, "summary": string, "tags": [string]}}],
  "clusters": [{{"id": string, "fragment_ids": [string], "theme": string}}]
}}
Only include clusters if clear themes exist."""


def heuristic_insight(fragment: Fragment) -> FragmentInsight:
    text = fragment.content or ""
    summary = f"{text[:77]}..." if len(text) > 80 else (text or "Untitled fragment")
    words = text.split()[:4]
    tags = [w for w in re.split(r"\W+", text.lower()) if w][:3]
    return FragmentInsight(
        id=fragment.id,
        title=" ".join(words) if words else "Untitled",
        summary=summary,
        tags=tags or ["idea"],
    )


def heuristic_context(fragments: list[Fragment]) -> FragmentContextOutput:
    """Local fallback: truncated summaries, leading words as tags, one catch-all cluster."""
    clusters = []
    if len(fragments) > 1:
        clusters.append(
            ContextCluster(
                id=HEURISTIC_CLUSTER_ID,
                theme="emerging-theme",
                fragment_ids=[f.id for f in fragments],
            )
        )
    return FragmentContextOutput(
        fragments=[heuristic_insight(f) for f in fragments],
        clusters=clusters,
    )


async def run_fragment_context_agent(
    process_aim: str,
    fragments: list[Fragment],
    llm: BaseLLMClient,
) -> FragmentContextOutput:
    """Per-fragment summaries/tags plus clusters for ``fragments``."""
    if not fragments:
        return FragmentContextOutput(fragments=[], clusters=None)

    raw = await llm.generate(build_fragment_context_prompt(process_aim, fragments), temperature=0.4)
    result = parse_model(raw, FragmentContextOutput)
    if not result.ok or result.value is None:
        logger.warning(f"⚠️ Fragment context answer unusable ({result.reason}); using heuristic")
        return heuristic_context(fragments)
    return result.value
