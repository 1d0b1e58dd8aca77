"""
Enhanced digest content: one LLM call that groups the slot's items into
stories and writes a short briefing. The result is advisory; the caller
falls back to the standard digest whenever this fails or is not viable.
"""
import asyncio
import logging
import re
from typing import Sequence

from pydantic import ValidationError

from nycping.core.entities import ContentItem
from nycping.core.errors import EnhancedDigestError
from nycping.core.schemas import EnhancedDigestContent
from nycping.services.llm import LLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are the editor of a short New York City alerts email. "
    "You only reorganize the items you are given; never invent facts."
)


def _extract_json(content: str) -> str:
    """
    Extract JSON from LLM response, stripping markdown code blocks if present.
    """
    content = content.strip()

    pattern = r'^```(?:json)?\s*\n?(.*?)\n?```$'
    match = re.match(pattern, content, re.DOTALL)
    if match:
        return match.group(1).strip()

    object_match = re.search(r'\{.*\}', content, re.DOTALL)
    if object_match:
        return object_match.group(0)

    return content


def build_prompt(items: Sequence[ContentItem]) -> str:
    items_text = ""
    for item in items:
        body = item.body[:200].replace('\n', ' ').strip()
        items_text += f"[{item.id}] ({item.module_id.value}) {item.title} - {body}\n"

    return f"""Here are {len(items)} NYC items for today's digest.

ITEMS:
{items_text}
Return ONE JSON object with:
- briefing: 1-2 sentences summarizing what matters most today
- clusters: list of {{"title", "summary", "item_ids"}} grouping items about the same story (use the ids in brackets exactly)
- horizon: list of short strings about upcoming deadlines or events mentioned in the items

JSON object:"""


async def generate_enhanced_digest_content(
    *,
    llm: LLMClient,
    items: Sequence[ContentItem],
    timeout: float = 120.0,
) -> EnhancedDigestContent:
    """
    Single time-boxed LLM call. Raises EnhancedDigestError on timeout,
    transport failure or unparseable output.
    """
    if not items:
        raise EnhancedDigestError("no items to enhance")

    logger.info(f"Generating enhanced content for {len(items)} items")
    try:
        response = await asyncio.wait_for(
            llm.complete(build_prompt(items), system=SYSTEM_PROMPT),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise EnhancedDigestError(f"enhanced generation exceeded {timeout}s") from e
    except Exception as e:
        raise EnhancedDigestError(f"LLM call failed: {e}") from e

    raw_content = response["content"]
    logger.info(f"LLM response received (latency: {response['latency_ms']}ms)")
    logger.debug(f"Raw response: {raw_content[:500]}...")

    try:
        content = EnhancedDigestContent.model_validate_json(_extract_json(raw_content))
    except ValidationError as e:
        raise EnhancedDigestError(f"invalid enhanced content: {e}") from e

    known = {item.id for item in items}
    for cluster in content.clusters:
        unknown = [i for i in cluster.item_ids if i not in known]
        if unknown:
            logger.warning(f"Dropping unknown item ids from cluster '{cluster.title}': {unknown}")
            cluster.item_ids = [i for i in cluster.item_ids if i in known]

    return content


def is_digest_viable(content: EnhancedDigestContent, min_section_items: int = 2) -> bool:
    """At least one populated section and enough entries overall."""
    counts = content.section_counts()
    populated = [name for name, count in counts.items() if count > 0]
    total = sum(counts.values())
    viable = bool(populated) and total >= min_section_items
    if not viable:
        logger.info(f"Enhanced digest not viable: sections={counts}")
    return viable

